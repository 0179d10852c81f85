#!/usr/bin/env python3
"""Interactive chat CLI for trying out the chatstream service."""

import json
import sys

import httpx
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt


def render_view(view: dict | None) -> Panel:
    """Render a view node as a rich panel."""
    if view is None:
        return Panel("[dim]...[/dim]", border_style="green")

    kind = view.get("kind")
    if kind == "text":
        return Panel(Markdown(view.get("text") or "..."), title="[bold green]Assistant[/bold green]", border_style="green")

    if kind == "loading":
        summary = view.get("summary") or view.get("tool_name")
        return Panel(f"[dim]Running {view.get('tool_name')}: {summary}[/dim]", border_style="yellow")

    if kind == "tool":
        payload = view.get("payload", {})
        title = f"[bold magenta]{view.get('tool_name')}[/bold magenta]"
        if payload.get("error"):
            body = payload.get("text") or payload.get("message") or "The tool failed."
            return Panel(f"[red]{body}[/red]", title=title, border_style="red")
        if "text" in payload:
            return Panel(Markdown(payload["text"] or "..."), title=title, border_style="magenta")
        return Panel(json.dumps(payload, indent=2), title=title, border_style="magenta")

    return Panel(str(view), border_style="dim")


class ChatCLI:
    """Interactive chat interface for the chatstream service."""

    def __init__(self, base_url: str = "http://localhost:8000", model: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.model = model
        self.chat_id: str | None = None
        self.console = Console()
        self.client = httpx.Client(timeout=120.0, headers={"X-User-Id": "cli"})

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]chatstream - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the assistant.\n"
                "Commands: /help, /new, /replay, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]Connected to chatstream[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/new":
                    self.chat_id = None
                    self.console.print("[yellow]Started a new chat[/yellow]")
                    continue
                elif user_input.lower() == "/replay":
                    self._replay()
                    continue
                elif user_input.strip() == "":
                    continue

                self._send_message(user_input)

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

    def _ensure_chat(self) -> str:
        if self.chat_id is None:
            response = self.client.post(f"{self.base_url}/chats")
            response.raise_for_status()
            self.chat_id = response.json()["chat_id"]
        return self.chat_id

    def _send_message(self, message: str) -> None:
        """Send a message and render the streamed views as they arrive."""
        try:
            chat_id = self._ensure_chat()
            payload: dict = {"message": message}
            if self.model:
                payload["model"] = self.model

            with (
                self.client.stream("POST", f"{self.base_url}/chats/{chat_id}/turns/stream", json=payload) as response,
                Live(render_view(None), console=self.console, refresh_per_second=12) as live,
            ):
                if response.status_code != 200:
                    response.read()
                    live.update(Panel(f"[red]API Error: {response.status_code} - {response.text}[/red]"))
                    return

                for line in response.iter_lines():
                    if not line:
                        continue
                    event = json.loads(line)
                    if event["event"] == "error":
                        live.update(Panel(f"[red]{event['message']}[/red]", border_style="red"))
                    else:
                        live.update(render_view(event.get("view")))

        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")

    def _replay(self) -> None:
        """Reload the current chat from the server and print every view."""
        if self.chat_id is None:
            self.console.print("[yellow]No chat yet[/yellow]")
            return

        response = self.client.get(f"{self.base_url}/chats/{self.chat_id}")
        if response.status_code != 200:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
            return

        chat = response.json()
        self.console.rule(chat["title"])
        for view in chat["views"]:
            if view["kind"] == "user":
                text = " ".join(p["text"] for p in view["parts"] if p["kind"] == "paragraph")
                self.console.print(f"[bold cyan]You:[/bold cyan] {text}")
            else:
                self.console.print(render_view(view))

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new chat
• /replay - Reload the current chat from the server
• /quit or /exit - Exit the chat

[bold]Try:[/bold]
1. "What's the latest AI news?"
2. "Find recent arXiv papers on diffusion models since 2024"
3. "Make a 4 slide deck about the history of computing"
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
