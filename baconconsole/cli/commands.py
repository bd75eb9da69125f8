"""Typer CLI commands with Rich formatting."""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..core.config import get_settings
from ..core.types import Ballot, BakeState, CycleDetail, NodeStatus, Severity
from ..services.console import Console as BaconConsole
from ..services.console import ViewUnavailable
from ..services.lifecycle import InvalidTransition
from ..services.payouts import PayoutStep
from ..services.registration import RegistrationStep
from ..services.rewards import verify_cycle
from ..services.settings import SettingsValidationError
from ..services.wizard import Custody, WizardStep

app = typer.Typer(
    name="bacon",
    help="Bacon Console - Operate your Tezos baking node",
)
payouts_app = typer.Typer(help="Delegator payouts per reward cycle")
voting_app = typer.Typer(help="Governance voting")
setup_app = typer.Typer(help="One-time signer setup")
settings_app = typer.Typer(help="Node settings")
app.add_typer(payouts_app, name="payouts")
app.add_typer(voting_app, name="voting")
app.add_typer(setup_app, name="setup")
app.add_typer(settings_app, name="settings")

console = Console()

T = TypeVar("T")

STATE_LABELS = {
    BakeState.CAN_BAKE: "[green]Baking[/green]",
    BakeState.LOW_BALANCE: "[yellow]Low balance[/yellow]",
    BakeState.NOT_REGISTERED: "[yellow]Not registered[/yellow]",
    BakeState.NO_SIGNER: "[red]No signer configured[/red]",
}

SEVERITY_STYLES = {
    Severity.SUCCESS: "green",
    Severity.INFO: "cyan",
    Severity.WARNING: "yellow",
    Severity.DANGER: "red",
}


def format_tez(mutez: int) -> str:
    """Mutez to a display string; amounts are integers everywhere else."""
    return f"{Decimal(mutez) / 1_000_000:,.6f} XTZ"


def run_with_console(func: Callable[[BaconConsole], Awaitable[T]]) -> T:
    """
    Run one async operation against a fresh console and tear it down.

    Notifications raised during the operation are printed; any danger
    notification, validation error, illegal step or unavailable view exits
    with code 1.
    """

    async def runner() -> tuple[T, BaconConsole]:
        bacon = BaconConsole()
        try:
            return await func(bacon), bacon
        finally:
            await bacon.aclose()

    try:
        result, bacon = asyncio.run(runner())
    except (SettingsValidationError, InvalidTransition, ViewUnavailable) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    failed = False
    for notification in bacon.bus.notifications:
        style = SEVERITY_STYLES.get(notification.severity, "white")
        console.print(f"[{style}]{notification.title}:[/{style}] {notification.message}")
        failed = failed or notification.severity == Severity.DANGER
    if failed:
        raise typer.Exit(1)
    return result


def print_alert(alert) -> None:
    if alert is None:
        return
    style = SEVERITY_STYLES.get(alert.severity, "white")
    console.print(f"[{style}]{alert.message}[/{style}]")
    if alert.severity == Severity.DANGER:
        raise typer.Exit(1)


async def _require_status(bacon: BaconConsole) -> NodeStatus | None:
    return await bacon.poller.refresh()


def render_status(status: NodeStatus) -> None:
    settings = get_settings()
    console.print(
        Panel(
            f"[bold]{status.delegate or 'No baker address'}[/bold]\n"
            f"State: {STATE_LABELS.get(status.state, 'Unknown')}\n\n"
            f"Level {status.level:,} | Cycle {status.cycle} "
            f"({status.cycle_progress(settings.blocks_per_cycle):.1f}% complete)\n"
            f"Head: {status.block_hash}",
            title="Node Status",
        )
    )

    table = Table(title="Baking Activity")
    table.add_column("Operation", style="cyan")
    table.add_column("Level", style="green", justify="right")
    table.add_column("Cycle", style="green", justify="right")
    table.add_column("Notes", style="dim")

    table.add_row(
        "Next bake",
        f"{status.next_bake.level:,}" if status.has_baking_rights else "--",
        str(status.next_bake.cycle) if status.has_baking_rights else "--",
        f"Priority {status.next_bake.priority}" if status.has_baking_rights else "No rights found",
    )
    table.add_row(
        "Next endorsement",
        f"{status.next_endorse.level:,}" if status.has_endorsing_rights else "--",
        str(status.next_endorse.cycle) if status.has_endorsing_rights else "--",
        "" if status.has_endorsing_rights else "No rights found",
    )
    table.add_row("", "", "", "")
    table.add_row(
        "Last bake",
        f"{status.prev_bake.level:,}" if status.prev_bake.level else "--",
        str(status.prev_bake.cycle) if status.prev_bake.level else "--",
        status.prev_bake.hash,
    )
    table.add_row(
        "Last endorsement",
        f"{status.prev_endorse.level:,}" if status.prev_endorse.level else "--",
        str(status.prev_endorse.cycle) if status.prev_endorse.level else "--",
        status.prev_endorse.hash,
    )
    console.print(table)

    if status.error:
        console.print(f"[red]Node reported: {status.error}[/red]")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


@app.command()
def status():
    """Show the node's current status and balances."""

    async def fetch(bacon: BaconConsole):
        status = await _require_status(bacon)
        balance = await bacon.delegate.refresh() if status else None
        return status, balance

    with console.status("[bold blue]Fetching node status..."):
        node_status, balance = run_with_console(fetch)

    if node_status is None:
        raise typer.Exit(1)

    console.print()
    render_status(node_status)
    if balance is not None:
        bal_table = Table(title="Balances", show_header=False)
        bal_table.add_column("Metric", style="cyan")
        bal_table.add_column("Value", style="green")
        bal_table.add_row("Spendable", format_tez(balance.spendable))
        bal_table.add_row("Frozen", format_tez(balance.frozen))
        bal_table.add_row("Staking balance", format_tez(balance.staking_balance))
        bal_table.add_row("Delegators", str(balance.delegator_count))
        console.print(bal_table)
    console.print()


@app.command()
def watch():
    """
    Continuously monitor the node with live updates.
    Press Ctrl+C to stop.
    """

    async def follow() -> None:
        bacon = BaconConsole()

        def show(node_status: NodeStatus) -> None:
            console.clear()
            render_status(node_status)
            console.print(
                f"\n[dim]Refreshing every {bacon.poller.interval:g} seconds... Press Ctrl+C to stop[/dim]"
            )

        def toast(notification) -> None:
            style = SEVERITY_STYLES.get(notification.severity, "white")
            console.print(f"[{style}]{notification.title}:[/{style}] {notification.message}")

        bacon.poller.subscribe(show)
        bacon.bus.subscribe(toast)
        bacon.start()
        try:
            await asyncio.Event().wait()
        finally:
            await bacon.aclose()

    try:
        asyncio.run(follow())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


# -- payouts --


def render_cycle(detail: CycleDetail) -> None:
    meta = detail.metadata
    console.print(
        Panel(
            f"[bold]Cycle {meta.cycle}[/bold] - {meta.status.value}\n\n"
            f"Staking balance: {format_tez(meta.staking_balance)}\n"
            f"Block rewards: {format_tez(meta.block_reward)}\n"
            f"Fee rewards: {format_tez(meta.fee_reward)}\n"
            f"Baker fee: {meta.baker_fee}%",
            title="Payout Cycle",
        )
    )

    table = Table(title=f"Delegators ({len(detail.records)})")
    table.add_column("Address", style="cyan")
    table.add_column("Balance", style="green", justify="right")
    table.add_column("Share", justify="right")
    table.add_column("Reward", style="green", justify="right")
    table.add_column("Operation", style="dim")
    for record in detail.records:
        table.add_row(
            record.delegator_address,
            format_tez(record.delegator_balance),
            f"{record.share_percent:.4f}%",
            format_tez(record.reward_amount),
            record.payout_op_hash or "",
        )
    console.print(table)
    console.print(f"[bold]Total payouts:[/bold] [bold yellow]{format_tez(detail.total_payouts)}[/bold yellow]")

    mismatches = verify_cycle(detail)
    for record, expected in mismatches:
        console.print(
            f"[yellow]{record.delegator_address}: reported {format_tez(record.reward_amount)}, "
            f"expected {format_tez(expected)}[/yellow]"
        )


@payouts_app.command(name="list")
def payouts_list():
    """List reward cycles and their payout status."""

    async def fetch(bacon: BaconConsole):
        cycles = await bacon.payouts.load_list()
        return cycles, bacon.payouts.disabled

    with console.status("[bold blue]Fetching payouts..."):
        cycles, disabled = run_with_console(fetch)

    if disabled:
        console.print("[yellow]Payouts are disabled on this node.[/yellow]")

    table = Table(title="Payout Cycles")
    table.add_column("Cycle", style="cyan", justify="right")
    table.add_column("Delegators", justify="right")
    table.add_column("Rewards", style="green", justify="right")
    table.add_column("Fee", justify="right")
    table.add_column("Status")
    for meta in cycles:
        table.add_row(
            str(meta.cycle),
            str(meta.delegator_count),
            format_tez(meta.total_rewards),
            f"{meta.baker_fee}%",
            meta.status.value,
        )
    console.print(table)


@payouts_app.command(name="detail")
def payouts_detail(cycle: int = typer.Argument(..., help="Reward cycle")):
    """Show per-delegator rewards for a cycle."""

    async def fetch(bacon: BaconConsole):
        await bacon.payouts.view_cycle(cycle)
        return bacon.payouts.detail

    detail = run_with_console(fetch)
    if detail is None:
        raise typer.Exit(1)
    render_cycle(detail)


@payouts_app.command(name="send")
def payouts_send(
    cycle: int = typer.Argument(..., help="Reward cycle"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Follow the payouts until they complete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Send payouts for a reward cycle."""

    async def send(bacon: BaconConsole):
        payouts = bacon.payouts
        await payouts.load_list()
        await payouts.view_cycle(cycle)
        if payouts.step != PayoutStep.DETAIL:
            return payouts.step, payouts.alert
        if not payouts.can_send:
            console.print("[yellow]Payouts cannot be sent for this cycle.[/yellow]")
            return payouts.step, payouts.alert

        render_cycle(payouts.detail)
        if not yes and not typer.confirm(f"Send payouts for cycle {cycle}?"):
            return payouts.step, None

        await payouts.send()
        if wait and payouts.step == PayoutStep.POLLING:
            with console.status(f"[bold blue]Waiting for payouts of cycle {cycle}..."):
                while payouts.step == PayoutStep.POLLING:
                    await asyncio.sleep(1)
        return payouts.step, payouts.alert

    step, alert = run_with_console(send)
    print_alert(alert)
    console.print(f"[dim]Payouts for cycle {cycle}: {step.value}[/dim]")


# -- voting --


@voting_app.command(name="show")
def voting_show():
    """Show the current voting period."""

    async def fetch(bacon: BaconConsole):
        node_status = await _require_status(bacon)
        if node_status is None:
            return None
        return await bacon.voting.load(node_status.delegate)

    period = run_with_console(fetch)
    if period is None:
        raise typer.Exit(1)

    settings = get_settings()
    lines = [
        f"[bold]Period {period.period_index}[/bold] - {period.phase.value}",
        f"{period.remaining_blocks:,} blocks remaining",
    ]
    if period.current_proposal:
        lines.append(f"\nProposal: {period.current_proposal}")
        lines.append(f"[dim]{settings.proposal_info_url}/{period.current_proposal}[/dim]")
    if period.has_voted:
        lines.append("\n[green]You have already voted![/green]")
    console.print(Panel("\n".join(lines), title="Governance"))

    if period.proposals:
        table = Table(title="Proposals")
        table.add_column("Proposal", style="cyan")
        table.add_column("Upvotes", style="green", justify="right")
        for proposal in period.proposals:
            table.add_row(proposal.hash, f"{proposal.upvotes:,}")
        console.print(table)


@voting_app.command(name="upvote")
def voting_upvote(proposal: str = typer.Argument(..., help="Proposal hash")):
    """Upvote a proposal during the proposal phase."""

    async def upvote(bacon: BaconConsole):
        node_status = await _require_status(bacon)
        if node_status is None:
            return None, None
        await bacon.voting.load(node_status.delegate)
        op_hash = await bacon.voting.upvote(proposal)
        return op_hash, bacon.voting.alert

    op_hash, alert = run_with_console(upvote)
    print_alert(alert)
    if op_hash:
        console.print(f"[dim]{get_settings().explorer_url}/{op_hash}[/dim]")


@voting_app.command(name="ballot")
def voting_ballot(ballot: Ballot = typer.Argument(..., help="yay, nay or pass")):
    """Cast a ballot during exploration or promotion."""

    async def cast(bacon: BaconConsole):
        node_status = await _require_status(bacon)
        if node_status is None:
            return False, None
        await bacon.voting.load(node_status.delegate)
        return bacon.voting.cast_ballot(ballot), bacon.voting.alert

    cast_ok, alert = run_with_console(cast)
    print_alert(alert)
    if not cast_ok:
        raise typer.Exit(1)


# -- setup --


@setup_app.command(name="software")
def setup_software(
    import_key: Optional[str] = typer.Option(
        None, "--import-key", help="Existing secret key (edsk...) instead of generating one"
    ),
):
    """Set up a software wallet signer."""

    async def run(bacon: BaconConsole):
        if await _require_status(bacon) is None:
            return None
        wizard = bacon.enter_onboarding()
        wizard.begin()
        wizard.choose_custody(Custody.SOFTWARE)

        if import_key:
            state = await wizard.import_key(import_key)
        else:
            state = await wizard.generate_key()
        if state.step != WizardStep.KEY_DISPLAYED:
            return state

        if state.key.secret_key is not None:
            console.print(
                Panel(
                    f"Secret key: [bold yellow]{state.key.secret_key.get_secret_value()}[/bold yellow]\n"
                    f"Address: {state.key.public_key_hash}\n\n"
                    "[red]Write the secret key down now. It will not be shown again.[/red]",
                    title="New Baking Key",
                )
            )
        else:
            console.print(f"Imported key for address [bold]{state.key.public_key_hash}[/bold]")

        if not typer.confirm("Have you saved this key?"):
            return state
        wizard.confirm_key()
        return await wizard.finish()

    state = run_with_console(run)
    if state is None:
        raise typer.Exit(1)
    if state.field_error:
        console.print(f"[red]Error: {state.field_error}[/red]")
        raise typer.Exit(1)
    print_alert(state.alert)
    if state.step != WizardStep.DONE:
        raise typer.Exit(1)
    console.print("[bold green]Setup complete.[/bold green]")


@setup_app.command(name="ledger")
def setup_ledger():
    """Set up a Ledger hardware wallet signer."""

    async def run(bacon: BaconConsole):
        if await _require_status(bacon) is None:
            return None
        wizard = bacon.enter_onboarding()
        wizard.begin()
        wizard.choose_custody(Custody.LEDGER)

        while True:
            with console.status("[bold blue]Looking for ledger..."):
                state = await wizard.test_device()
            if state.step == WizardStep.DEVICE_DETECTED:
                print_alert(state.alert)
                break
            console.print(f"[red]{state.alert.message if state.alert else 'No ledger found'}[/red]")
            if not typer.confirm("Connect the ledger, open the Tezos Baking app and try again?"):
                return state

        state = wizard.continue_to_address()
        print_alert(state.alert)
        console.print("Confirm the baking address on your device.")
        with console.status("[bold blue]Waiting for confirmation on device..."):
            state = await wizard.confirm_address()
        if state.step != WizardStep.CONFIRMED:
            return state
        print_alert(state.alert)
        return await wizard.finish()

    state = run_with_console(run)
    if state is None:
        raise typer.Exit(1)
    if state.step != WizardStep.DONE:
        print_alert(state.alert)
        raise typer.Exit(1)
    console.print("[bold green]Setup complete.[/bold green]")


# -- registration --


@app.command()
def register(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Register the baker address as a delegate on chain."""

    async def run(bacon: BaconConsole):
        node_status = await _require_status(bacon)
        if node_status is None:
            return None
        if node_status.state != BakeState.NOT_REGISTERED:
            console.print("[yellow]This baker is already registered.[/yellow]")
            return None

        tracker = bacon.enter_registration()
        spendable = await tracker.refresh_balance(node_status.delegate)
        if spendable is None:
            return tracker
        console.print(f"Spendable balance: [green]{format_tez(spendable)}[/green]")
        if not tracker.can_register:
            await tracker.submit()
            return tracker
        if not yes and not typer.confirm(f"Register {node_status.delegate} as a baker?"):
            return tracker
        await tracker.submit()
        return tracker

    tracker = run_with_console(run)
    if tracker is None:
        return
    print_alert(tracker.alert)
    if tracker.step != RegistrationStep.SUBMITTED:
        raise typer.Exit(1)


# -- settings --


@settings_app.command(name="show")
def settings_show():
    """Show RPC endpoints, baker fee and notification settings."""
    node_settings = run_with_console(lambda bacon: bacon.settings.load())
    if node_settings is None:
        raise typer.Exit(1)

    table = Table(title="RPC Endpoints")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("URL", style="green")
    for endpoint_id, url in sorted(node_settings.endpoints.items()):
        table.add_row(str(endpoint_id), url)
    console.print(table)

    telegram = node_settings.telegram
    console.print(
        Panel(
            f"Baker fee: [bold]{node_settings.baker_fee}%[/bold]\n\n"
            f"Telegram: {'enabled' if telegram.enabled else 'disabled'}\n"
            f"Chat ids: {', '.join(str(c) for c in telegram.chat_ids) or '--'}\n"
            f"Email SMTP host: {node_settings.email.smtp_host or '--'}",
            title="Settings",
        )
    )


@settings_app.command(name="add-endpoint")
def settings_add_endpoint(url: str = typer.Argument(..., help="RPC URL")):
    """Add an RPC endpoint after checking it serves the right network."""
    if not run_with_console(lambda bacon: bacon.settings.add_endpoint(url)):
        raise typer.Exit(1)


@settings_app.command(name="delete-endpoint")
def settings_delete_endpoint(endpoint_id: int = typer.Argument(..., help="Endpoint ID")):
    """Delete an RPC endpoint."""
    if not run_with_console(lambda bacon: bacon.settings.delete_endpoint(endpoint_id)):
        raise typer.Exit(1)


@settings_app.command(name="baker-fee")
def settings_baker_fee(fee: int = typer.Argument(..., help="Fee in percent (1-99)")):
    """Set the fee charged to delegators."""
    if not run_with_console(lambda bacon: bacon.settings.save_baker_fee(fee)):
        raise typer.Exit(1)


@settings_app.command(name="telegram")
def settings_telegram(
    chat_ids: str = typer.Option(..., "--chat-ids", "-c", help="Space or comma separated chat ids"),
    api_key: str = typer.Option(..., "--api-key", "-k", help="Bot API key"),
):
    """Configure Telegram notifications."""
    if not run_with_console(lambda bacon: bacon.settings.save_telegram(chat_ids, api_key)):
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
):
    """Serve the web console."""
    import uvicorn

    from ..web.app import create_app

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    app()
