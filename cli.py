"""
Cafeteria realtime CLI.

Command-line interface for common realtime operations: gateway health,
connected users, publishing test events and listening on channels.
"""

import asyncio
import sys
import time

import httpx
import typer
from rich.console import Console
from rich.table import Table

from shared.config.settings import settings

app = typer.Typer(
    name="cafeteria-realtime",
    help="Cafeteria realtime notification CLI",
    add_completion=False,
)
console = Console()

__version__ = "1.0.0"


def _http_base(ws_url: str) -> str:
    """ws://host:port/ws -> http://host:port"""
    base = ws_url.replace("wss://", "https://", 1).replace("ws://", "http://", 1)
    return base.rsplit("/ws", 1)[0]


# =============================================================================
# Health Commands
# =============================================================================

@app.command()
def health(
    url: str = typer.Option(settings.ws_gateway_url, help="Gateway WebSocket URL"),
):
    """Check gateway health."""

    async def _health():
        base = _http_base(url)
        table = Table(title="Gateway Health")
        table.add_column("Check", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Response Time", style="yellow")

        async with httpx.AsyncClient(timeout=5.0) as client:
            try:
                start = time.time()
                response = await client.get(f"{base}/ws/health")
                elapsed = (time.time() - start) * 1000
            except httpx.HTTPError as e:
                table.add_row("Gateway", f"✗ {type(e).__name__}", "-")
                console.print(table)
                raise typer.Exit(1)

        if response.status_code != 200:
            table.add_row("Gateway", f"✗ Status {response.status_code}", f"{elapsed:.0f}ms")
            console.print(table)
            raise typer.Exit(1)

        data = response.json()
        table.add_row("Gateway", "✓ Healthy", f"{elapsed:.0f}ms")
        transport_ok = data.get("transport_connected", False)
        table.add_row("Transport", "✓ Connected" if transport_ok else "✗ Disconnected", "-")
        table.add_row("Local sockets", str(data.get("active_connections", "?")), "-")
        console.print(table)

    asyncio.run(_health())


@app.command()
def connections(
    url: str = typer.Option(settings.ws_gateway_url, help="Gateway WebSocket URL"),
    token: str = typer.Option(..., envvar="REALTIME_TOKEN", help="Admin access token"),
):
    """Show connected-user counts (requires ADMIN)."""

    async def _connections():
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                f"{_http_base(url)}/ws/connections",
                headers={"Authorization": f"Bearer {token}"},
            )
        if response.status_code != 200:
            console.print(f"[red]✗ {response.status_code}: {response.text}[/red]")
            raise typer.Exit(1)

        table = Table(title="Connections")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        for key, value in response.json().items():
            table.add_row(key.replace("_", " ").title(), str(value))
        console.print(table)

    asyncio.run(_connections())


# =============================================================================
# Event Commands
# =============================================================================

@app.command()
def publish(
    event_type: str = typer.Argument(..., help="Event type, e.g. ORDER_ADD"),
    user: list[str] = typer.Option([], "--user", "-u", help="Affected user id (repeatable)"),
    message: str = typer.Option(None, help="Override the default message"),
    link: str = typer.Option(None, help="Deep link"),
    silent: bool = typer.Option(False, "--silent", help="Set skipNotify"),
):
    """Publish a test event through the configured transport."""
    from shared.infrastructure.events import EventEnvelope, MutationContext, RealtimeServices
    from shared.utils.exceptions import UndeclaredEventTypeError

    try:
        overrides = {"link": link, "skip_notify": silent}
        if message:
            overrides["message"] = message
        envelope = EventEnvelope.create(event_type.upper(), **overrides)
    except UndeclaredEventTypeError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    async def _publish():
        services = RealtimeServices.build()
        await services.start()
        try:
            channels = services.router.resolve_channels_for_event(
                envelope, MutationContext.for_users(*user)
            )
            ok = await services.publisher.publish_event(
                envelope, MutationContext.for_users(*user)
            )
        finally:
            await services.close()
        return channels, ok

    try:
        channels, ok = asyncio.run(_publish())
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    names = ", ".join(channel.wire_name for channel in channels)
    if ok:
        console.print(f"[green]✓ Published {envelope.type.value} to {names}[/green]")
    else:
        console.print(f"[yellow]Published {envelope.type.value} to {names} with failures[/yellow]")
        raise typer.Exit(1)


@app.command()
def listen(
    user_id: str = typer.Option(..., "--user-id", help="User id to sign the token for"),
    role: str = typer.Option("USER", help="Role claim"),
    url: str = typer.Option(settings.ws_gateway_url, help="Gateway WebSocket URL"),
    duration: float = typer.Option(0, help="Seconds to listen (0 = until Ctrl+C)"),
):
    """Connect as a user and print notifications as they arrive (development only)."""
    from realtime_client import RealtimeClient
    from shared.security.auth import sign_jwt

    if settings.environment == "production":
        console.print("[red]listen signs its own token and is disabled in production[/red]")
        raise typer.Exit(1)

    def _print(notification):
        style = {"success": "green", "error": "red", "info": "blue"}[notification.kind.value]
        link = f" [dim]{notification.link}[/dim]" if notification.link else ""
        console.print(f"[{style}]● {notification.message}[/{style}]{link}")

    async def _listen():
        client = RealtimeClient.connect_to_gateway(
            url, token_provider=lambda: sign_jwt(user_id, role)
        )
        client.notifications.subscribe(_print)
        client.manager.add_on_open_callback(
            lambda: console.print(f"[blue]Subscribed: {', '.join(sorted(client.manager.interests))}[/blue]")
        )
        await client.start(user_id=user_id, role=role)
        try:
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await client.close()

    try:
        asyncio.run(_listen())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")


# =============================================================================
# Info Commands
# =============================================================================

@app.command()
def version():
    """Show version information."""
    table = Table(title="Cafeteria Realtime Version")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")

    table.add_row("Realtime", __version__)
    table.add_row("Transport", settings.realtime_transport)
    table.add_row("Python", sys.version.split()[0])

    console.print(table)


if __name__ == "__main__":
    app()
