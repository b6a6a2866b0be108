"""Operator-facing build output."""

from rich.console import Console


class BuildUi:
    """Prints build progress for one named build."""
    
    def __init__(self, name: str, console: Console = None, error_console: Console = None):
        self.name = name
        self.console = console or Console()
        self.error_console = error_console or Console(stderr=True)
        
    def say(self, message: str) -> None:
        """Print a top-level progress line."""
        self.console.print(f"[bold green]==> {self.name}:[/bold green] {message}", highlight=False)
        
    def message(self, message: str) -> None:
        """Print a detail line under the current step."""
        self.console.print(f"    {self.name}: {message}", highlight=False)
        
    def error(self, message: str) -> None:
        """Print an error."""
        self.error_console.print(f"[bold red]==> {self.name}:[/bold red] [red]{message}[/red]", highlight=False)
