# ~/nftbridge/src/nftbridge/cli/main.py
import asyncio
import logging
import signal
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..deployments import DeploymentStore
from ..devnet import Devnet
from ..errors import BridgeError, ConfigError
from ..networks import load_networks
from ..orchestrator import BridgeOrchestrator, BridgeStatus, CancellationToken, WatchConfig
from ..provider import providers
from ..reconciler import DeploymentReconciler
from ..wallet import Account, WalletSession

console = Console()


def _fail(message):
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


def _run(coro):
    """Run *coro* and close every cached provider afterwards."""
    async def wrapper():
        try:
            return await coro
        finally:
            await providers().close_all()
    return asyncio.run(wrapper())


def _account(ctx):
    key = ctx.obj["private_key"]
    if not key:
        raise ConfigError("No signer key: pass --private-key or set NFTBRIDGE_PRIVATE_KEY")
    return Account.from_key(key)


def _orchestrator(ctx, watch=None):
    wallet = WalletSession(_account(ctx), providers())
    store = DeploymentStore(ctx.obj["deployments"])
    if not store.exists():
        raise ConfigError(
            f"Deployment configuration not found at {store.path}. "
            "Please deploy the contract first."
        )
    return BridgeOrchestrator(wallet, store, providers(), watch=watch)


def _listing_table(title, listings):
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Origin Chain", style="yellow")
    table.add_column("Minted At", style="magenta")
    for item in listings:
        table.add_row(str(item.token_id), item.name, item.origin_label, item.minted_label)
    return table


async def _show_listing(orch, network):
    listings = await orch.list_nfts(network, force=True)
    if not listings:
        console.print(f"No NFTs found on {network}.")
        console.print(f"You can mint a new NFT with: [bold]nftbridge mint {network}[/bold]")
    else:
        console.print(_listing_table(f"NFTs owned on {network}", listings))
    return listings


@click.group()
@click.version_option(version=__version__, prog_name="nftbridge")
@click.option('--deployments', envvar='NFTBRIDGE_DEPLOYMENTS', default='deployments.json',
              show_default=True, help='Deployment records file')
@click.option('--networks', 'networks_file', envvar='NFTBRIDGE_NETWORKS', default=None,
              help='JSON file extending the built-in network catalogue')
@click.option('--private-key', envvar='NFTBRIDGE_PRIVATE_KEY', default=None,
              help='Hex-encoded signer key')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, deployments, networks_file, private_key, verbose):
    """Cross-chain NFT bridge - deploy, mint, list and bridge NFTs between networks"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj.update(deployments=deployments, networks=networks_file,
                   private_key=private_key)


@cli.command()
@click.pass_context
def networks(ctx):
    """Show known networks"""
    try:
        registry = load_networks(ctx.obj["networks"])
        deployed = DeploymentStore(ctx.obj["deployments"]).load()
    except BridgeError as e:
        _fail(e)

    table = Table(title="Networks")
    table.add_column("Key", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Chain ID", style="yellow")
    table.add_column("RPC URL")
    table.add_column("Contract", style="magenta")
    for net in registry:
        rec = deployed.get(net.chain_id)
        table.add_row(net.key, net.display_name, str(net.chain_id), net.rpc_url,
                      rec.address if rec else "-")
    console.print(table)


@cli.command()
@click.argument('targets', nargs=-1, required=True)
@click.pass_context
def deploy(ctx, targets):
    """Deploy to NETWORKS and connect every deployed network"""
    try:
        registry = load_networks(ctx.obj["networks"])
        nets = [registry.get(key) for key in targets]
        reconciler = DeploymentReconciler(
            DeploymentStore(ctx.obj["deployments"]), _account(ctx), providers(),
        )
        report = _run(reconciler.reconcile(nets))
    except BridgeError as e:
        _fail(e)

    for key in report.deployed:
        console.print(f"✅ [bold green]Deployed[/bold green] on {key}")
    for key in report.reused:
        console.print(f"♻️  Already deployed on {key}")
    for chain_id, token_id in sorted(report.seed_tokens.items()):
        console.print(f"   Seed NFT #{token_id} minted on chain {chain_id}")
    console.print(f"🔗 {len(report.edges)} trust edge(s) configured")


@cli.command()
@click.argument('network')
@click.pass_context
def mint(ctx, network):
    """Mint a new NFT on NETWORK"""
    try:
        orch = _orchestrator(ctx)
        token_id, tx_hash = _run(orch.mint(network))
        url = orch.tx_url(network, tx_hash)
    except BridgeError as e:
        _fail(e)

    console.print(f"✅ [bold green]Minted[/bold green] NFT #{token_id} on {network}")
    console.print(f"   Transaction: {url or tx_hash}")


@cli.command(name='list')
@click.argument('network')
@click.pass_context
def list_(ctx, network):
    """List NFTs owned on NETWORK"""
    try:
        orch = _orchestrator(ctx)
        _run(_show_listing(orch, network))
    except BridgeError as e:
        _fail(e)


async def _bridge_and_watch(orch, source, dest, token_id, recipient, wait):
    cancel = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        pass

    def report(op):
        if op.status is BridgeStatus.SUBMITTED:
            console.print(f"📤 Transaction submitted: {orch.tx_url(source, op.tx_hash) or op.tx_hash}")
        elif op.status is BridgeStatus.SOURCE_CONFIRMED:
            console.print("✅ Transaction confirmed on the source chain")
            if wait:
                console.print("\nWaiting for NFT to be received on the destination chain...")
                console.print(f"This may take a few minutes. Timeout set to "
                              f"{orch.watch.timeout:.0f} seconds.")

    orch.on_status(report)
    try:
        return await orch.bridge(source, dest, token_id, recipient, wait=wait, cancel=cancel)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


@cli.command()
@click.argument('source')
@click.argument('dest', required=False)
@click.argument('token_id', required=False, type=int)
@click.argument('recipient', required=False)
@click.option('--no-wait', is_flag=True, help='Return once the source chain confirms')
@click.option('--timeout', type=float, default=300.0, show_default=True,
              help='Seconds to watch the destination chain')
@click.option('--poll-interval', type=float, default=5.0, show_default=True,
              help='Seconds between destination checks')
@click.option('--initial-delay', type=float, default=10.0, show_default=True,
              help='Seconds to wait before the first destination check')
@click.pass_context
def bridge(ctx, source, dest, token_id, recipient, no_wait, timeout, poll_interval,
           initial_delay):
    """Bridge NFT TOKEN_ID from SOURCE to DEST"""
    try:
        orch = _orchestrator(ctx, WatchConfig(poll_interval=poll_interval,
                                                initial_delay=initial_delay, timeout=timeout))
        if dest is None or token_id is None:
            listings = _run(_show_listing(orch, source))
            if dest is None:
                console.print("\nUsage: nftbridge bridge SOURCE DEST TOKEN_ID [RECIPIENT]")
            else:
                console.print(f"\nTo bridge an NFT, run: "
                              f"[bold]nftbridge bridge {source} {dest} <TOKEN_ID>[/bold]")
                if listings:
                    console.print(f"Example: nftbridge bridge {source} {dest} "
                                  f"{listings[0].token_id}")
            return

        op = _run(_bridge_and_watch(orch, source, dest, token_id, recipient, not no_wait))
        dest_address_url = orch.address_url(dest, op.recipient)
    except BridgeError as e:
        if e.operation is not None:
            tx_url = orch.tx_url(source, e.operation.tx_hash)
            console.print(f"⚠️  Bridge transaction was submitted: {tx_url or e.operation.tx_hash}")
        _fail(e)

    if op.status is BridgeStatus.DESTINATION_CONFIRMED:
        console.print(Panel.fit(
            f"NFT ID: {op.token_id}\nRecipient: {op.recipient}"
            + (f"\n{dest_address_url}" if dest_address_url else ""),
            title="[bold green]NFT received on destination chain![/bold green]",
            border_style="green",
        ))
    elif op.status is BridgeStatus.TIMED_OUT:
        console.print("\n⚠️  Timeout reached. NFT may still be received later.")
        console.print(f"   Check later with: [bold]nftbridge list {dest}[/bold]")
    elif op.status is BridgeStatus.CANCELLED:
        console.print("\n⚠️  Monitoring cancelled. NFT may still be received later.")
    else:
        console.print(f"\nNFT #{op.token_id} is on its way to {dest}. "
                      f"Check later with: [bold]nftbridge list {dest}[/bold]")


@cli.command()
@click.argument('targets', nargs=-1, required=True)
@click.option('--latency', type=float, default=0.0, show_default=True,
              help='Message delivery delay in seconds')
@click.option('--data-dir', type=click.Path(file_okay=False), default=None,
              help='Persist ledger state in this directory')
@click.pass_context
def devnet(ctx, targets, latency, data_dir):
    """Run local ledger nodes for NETWORKS joined by a message relay"""
    try:
        registry = load_networks(ctx.obj["networks"])
        net = Devnet([registry.get(key) for key in targets], latency=latency,
                     data_dir=data_dir)
    except BridgeError as e:
        _fail(e)

    async def serve():
        await net.start()
        table = Table(title="Devnet")
        table.add_column("Network", style="cyan")
        table.add_column("Chain ID", style="yellow")
        table.add_column("RPC URL", style="green")
        for info in net.info():
            table.add_row(info["name"], str(info["chain_id"]), info["rpc_url"])
        console.print(table)
        console.print("Press Ctrl+C to stop")

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
        try:
            await net.run(stop_event=stop)
        finally:
            await net.stop()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass
    console.print("[bold]Devnet stopped[/bold]")


if __name__ == "__main__":
    cli()
