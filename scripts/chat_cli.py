#!/usr/bin/env python3
"""Interactive chat CLI for testing the agent service."""

import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table


class ChatCLI:
    """Interactive chat interface for the agent service.

    Conversation history is kept client-side and sent with every run.
    """

    def __init__(self, base_url: str = "http://localhost:8000", model: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.model = model
        self.tools: list[str] = []
        self.history: list[dict[str, str]] = []
        self.console = Console()
        self.client = httpx.Client(timeout=600.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]flowagent - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the agent.\n"
                "Commands: /help, /tools, /use <tool>, /model <id>, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]Connected to agent service[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                command = user_input.strip()

                if command.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command.lower() == "/help":
                    self._show_help()
                    continue
                elif command.lower() == "/clear":
                    self.history = []
                    self.console.print("[yellow]Conversation cleared[/yellow]")
                    continue
                elif command.lower() == "/tools":
                    self._show_tools()
                    continue
                elif command.startswith("/use "):
                    self.tools.append(command.removeprefix("/use ").strip())
                    self.console.print(f"[yellow]Tools enabled: {', '.join(self.tools)}[/yellow]")
                    continue
                elif command.startswith("/model "):
                    self.model = command.removeprefix("/model ").strip()
                    self.console.print(f"[yellow]Model set to {self.model}[/yellow]")
                    continue
                elif command == "":
                    continue

                result = self._send_message(user_input)
                if result:
                    self._display_result(result)
                    if result.get("success"):
                        self.history.append({"role": "user", "content": user_input})
                        self.history.append({"role": "assistant", "content": result.get("response", "")})

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _send_message(self, message: str) -> dict | None:
        """Run the agent on a message."""
        payload: dict = {
            "message": message,
            "conversation_history": self.history,
            "tools": [{"name": name} for name in self.tools],
        }
        if self.model:
            payload["model"] = {"model": self.model}

        try:
            with self.console.status("[dim]Thinking...[/dim]"):
                response = self.client.post(f"{self.base_url}/agent/run", json=payload)
        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return None

        if response.status_code != 200:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
            return None
        return response.json()

    def _display_result(self, result: dict) -> None:
        """Display the agent result with nice formatting."""
        for call in result.get("tool_calls", []):
            self.console.print(f"[dim]tool {call.get('tool')}: {str(call.get('input'))[:80]}[/dim]")

        if not result.get("success"):
            self.console.print(Panel(result.get("error") or "Unknown error", title="[red]Error[/red]", border_style="red"))
            return

        usage = result.get("usage") or {}
        self.console.print(
            Panel(
                Markdown(result.get("response") or "No response"),
                title="[bold green]Agent[/bold green]",
                subtitle=f"[dim]{result.get('iterations', 0)} turns, {usage.get('total_tokens', 0)} tokens[/dim]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_tools(self) -> None:
        """Show the pre-registered tools."""
        try:
            tools = self.client.get(f"{self.base_url}/tools").json()
        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return

        table = Table(title="Registered Tools")
        table.add_column("Name", style="cyan")
        table.add_column("Description")
        for tool in tools:
            table.add_row(tool["name"], tool["description"])
        self.console.print(table)

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /tools - List pre-registered tools
• /use <tool> - Enable a registered tool for the next messages
• /model <provider/model> - Switch model (e.g. anthropic/claude-sonnet-4-6)
• /clear - Clear the conversation history
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Provider API keys are read from the server's environment
• Models use the provider/model-name format
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    model = sys.argv[2] if len(sys.argv) > 2 else None

    chat = ChatCLI(base_url, model)
    chat.start()


if __name__ == "__main__":
    main()
