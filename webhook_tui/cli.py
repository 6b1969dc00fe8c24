"""
CLI (Command Line Interface) for Webhook TUI
"""
import sys
import click
from rich.console import Console

from .config import DB_FILE
from .log import get_logger
from .store import RecordStore, StorageError
from .tunnel import TunnelSessionManager

console = Console()


@click.command()
def cli():
    """
    Webhook Listener TUI - receive, store and browse webhooks

    Port, subdomain and tunnel timeout are entered on the setup screen.
    """
    logger = get_logger('cli')
    store = RecordStore(DB_FILE)
    try:
        store.open()
    except StorageError as e:
        logger.error(str(e))
        console.print(f"[red]❌ Failed to initialize database:[/red] {e}")
        sys.exit(1)

    from .tui import WebhookApp

    manager = TunnelSessionManager()
    try:
        WebhookApp(store=store, manager=manager).run()
    finally:
        # Never leave an orphaned localtunnel behind, whatever ended the app.
        manager.shutdown()
        store.close()


def main():
    """Entry point for CLI"""
    cli()


if __name__ == '__main__':
    main()
