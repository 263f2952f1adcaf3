"""
CLI entry point for the custody wallet.
"""

import signal
from pathlib import Path
from typing import Optional

import structlog
import typer
from dotenv import load_dotenv
from eth_account import Account

from .config import Settings, load_settings
from .deposit import Deposit
from .evm import EvmNode, NodeConnectionError, to_address
from .gas import EstimationError, FeeEstimator, GasParams, Speed
from .risk import ComplianceGate
from .transfer import TransferError, TransferExecutor, TransferRequest
from .units import ether_to_wei, format_ether, format_gwei
from .worker import DepositWorker

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

logger = structlog.get_logger()

app = typer.Typer(
    name="custody-wallet",
    help="EVM custody wallet: deposit scanner, gas estimation and transfers",
    add_completion=False,
)

SPEED_LABELS = {
    Speed.SLOW: "Slow - cheapest (1.0x)",
    Speed.NORMAL: "Normal - recommended (1.1x)",
    Speed.FAST: "Fast - next block (1.5x)",
}

ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")
RpcOption = typer.Option(..., "--rpc-url", "-r", envvar="WALLET_RPC_URL", help="EVM JSON-RPC URL")


def _load(config_path: Optional[Path]) -> Settings:
    try:
        return load_settings(config_path)
    except Exception as e:
        typer.echo(f"Error loading config: {e}", err=True)
        raise typer.Exit(1)


def _connect(rpc_url: str) -> EvmNode:
    try:
        return EvmNode.connect(rpc_url)
    except NodeConnectionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _parse_amount(amount: str) -> int:
    try:
        return ether_to_wei(amount)
    except (ValueError, ArithmeticError) as e:
        raise typer.BadParameter(f"Invalid amount {amount!r}: {e}")


def _parse_address(value: str, label: str) -> str:
    try:
        return to_address(value)
    except ValueError as e:
        raise typer.BadParameter(f"{label}: {e}")


def _parse_data(data: str) -> bytes:
    try:
        return bytes.fromhex(data[2:] if data.startswith("0x") else data)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid call data {data!r}: {e}")


def _echo_gas_params(params: GasParams) -> None:
    typer.echo(f"  Gas limit: {params.gas_limit}")
    typer.echo(f"  Transaction type: {'Legacy' if params.is_legacy else 'EIP-1559'}")
    if params.is_legacy:
        typer.echo(f"  Gas price: {format_gwei(params.gas_price)} gwei")
        typer.echo(f"  Estimated fee: {format_ether(params.max_cost)} ETH")
    else:
        typer.echo(f"  Priority fee: {format_gwei(params.max_priority_fee)} gwei")
        typer.echo(f"  Max fee: {format_gwei(params.max_fee)} gwei")
        typer.echo(f"  Estimated max fee: {format_ether(params.max_cost)} ETH")


@app.command()
def scan(
    config_path: Optional[Path] = ConfigOption,
    once: bool = typer.Option(False, "--once", help="Scan one batch per chain and exit"),
) -> None:
    """
    Scan every configured chain for deposits into watched addresses.
    """
    settings = _load(config_path)

    if not settings.scanner.enabled:
        typer.echo("Scanner is disabled in configuration.")
        return

    def on_deposit(deposit: Deposit) -> None:
        status = "ok" if deposit.success else "FAILED"
        typer.echo(
            f"Deposit [{status}] {format_ether(deposit.value)} ETH "
            f"{deposit.sender} -> {deposit.receiver} tx={deposit.tx_hash}"
        )

    worker = DepositWorker(settings, on_deposit=on_deposit)
    workers = worker.build()

    if not workers:
        typer.echo("No chains could be started.", err=True)
        raise typer.Exit(1)

    if once:
        failed = 0
        for w in workers:
            try:
                scanned = w.scanner.run_once()
                typer.echo(f"{w.chain.name}: scanned {scanned} blocks, next block {w.scanner.cursor}")
            except Exception as e:
                failed += 1
                logger.error("scan_once_failed", chain=w.chain.name, cursor=w.scanner.cursor, error=str(e))
                typer.echo(f"{w.chain.name}: scan failed: {e}", err=True)
            finally:
                w.scanner.close()
        if failed:
            raise typer.Exit(1)
        return

    signal.signal(signal.SIGTERM, lambda signum, frame: worker.stop_event.set())

    started = worker.start()
    typer.echo(f"Scanning {started} chain(s). Press Ctrl+C to stop.")
    try:
        worker.wait()
    except KeyboardInterrupt:
        typer.echo("\nStopping scanners...")
    finally:
        worker.stop()


@app.command("estimate-gas")
def estimate_gas(
    rpc_url: str = RpcOption,
    sender: str = typer.Option(..., "--from", help="Sender address"),
    receiver: Optional[str] = typer.Option(None, "--to", help="Receiver address (omit for contract creation)"),
    amount: str = typer.Option("0", "--amount", "-a", help="Amount in ETH"),
    data: str = typer.Option("", "--data", help="Call data (hex)"),
    speed: Speed = typer.Option(Speed.NORMAL, "--speed", "-s", help="Speed tier"),
) -> None:
    """
    Estimate gas parameters for a transaction without sending it.
    """
    sender = _parse_address(sender, "--from")
    if receiver is not None:
        receiver = _parse_address(receiver, "--to")
    value = _parse_amount(amount)
    call_data = _parse_data(data)

    node = _connect(rpc_url)

    try:
        params = FeeEstimator(node).suggest(sender, receiver, value, call_data, speed)
    except EstimationError as e:
        typer.echo(f"Gas estimation failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        node.close()

    typer.echo(f"Gas parameters ({speed.value}):")
    _echo_gas_params(params)


@app.command("compare-speeds")
def compare_speeds(
    rpc_url: str = RpcOption,
    sender: str = typer.Option(..., "--from", help="Sender address"),
    receiver: str = typer.Option(..., "--to", help="Receiver address"),
    amount: str = typer.Option("0.1", "--amount", "-a", help="Amount in ETH"),
) -> None:
    """
    Show gas parameters for every speed tier side by side.
    """
    sender = _parse_address(sender, "--from")
    receiver = _parse_address(receiver, "--to")
    value = _parse_amount(amount)

    node = _connect(rpc_url)
    estimator = FeeEstimator(node)

    try:
        for speed in Speed:
            params = estimator.suggest(sender, receiver, value, b"", speed)
            typer.echo(f"[{SPEED_LABELS[speed]}]")
            _echo_gas_params(params)
            typer.echo("")
    except EstimationError as e:
        typer.echo(f"Gas estimation failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        node.close()


@app.command()
def balance(
    address: str = typer.Argument(..., help="Address to query"),
    rpc_url: str = RpcOption,
) -> None:
    """
    Show the native balance of an address.
    """
    node = _connect(rpc_url)
    try:
        wei = node.get_balance(address)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    finally:
        node.close()

    typer.echo(f"{address}: {format_ether(wei)} ETH ({wei} wei)")


@app.command()
def transfer(
    rpc_url: str = RpcOption,
    receiver: str = typer.Option(..., "--to", help="Receiver address"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount in ETH"),
    private_key: str = typer.Option(
        ..., "--private-key", envvar="WALLET_PRIVATE_KEY", help="Sender private key", hide_input=True
    ),
    speed: Speed = typer.Option(Speed.NORMAL, "--speed", "-s", help="Speed tier"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML config; enables the compliance gate from its risk section"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """
    Send a native-coin transfer and wait for confirmation.

    WARNING: this broadcasts a real transaction.
    """
    value = _parse_amount(amount)
    try:
        sender = Account.from_key(private_key).address
    except Exception as e:
        typer.echo(f"Invalid private key: {e}", err=True)
        raise typer.Exit(1)

    compliance = ComplianceGate(_load(config_path).risk) if config_path else None

    typer.echo(f"From:   {sender}")
    typer.echo(f"To:     {receiver}")
    typer.echo(f"Amount: {format_ether(value)} ETH")
    typer.echo(f"Speed:  {speed.value}")

    if not yes:
        typer.confirm("Send this transaction?", abort=True)

    node = _connect(rpc_url)
    executor = TransferExecutor(node, compliance=compliance)
    request = TransferRequest(
        sender=sender,
        private_key=private_key,
        receiver=receiver,
        amount=value,
        speed=speed,
    )

    try:
        result = executor.execute(request)
    except (TransferError, EstimationError) as e:
        typer.echo(f"Transfer failed: {e}", err=True)
        raise typer.Exit(1)
    finally:
        executor.close()

    mark = "✓" if result.success else "✗"
    typer.echo(f"{mark} {result.tx_hash}")
    typer.echo(f"  Block: {result.block_number}")
    typer.echo(f"  Gas used: {result.gas_used}")


@app.command("check-risk")
def check_risk(
    sender: str = typer.Argument(..., help="Sender address"),
    receiver: str = typer.Argument(..., help="Receiver address"),
    amount: str = typer.Argument(..., help="Amount in ETH"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """
    Run the compliance rules for a transfer without sending anything.
    """
    gate = ComplianceGate(_load(config_path).risk)
    try:
        result = gate.check(sender, receiver, _parse_amount(amount))
    except ValueError as e:
        raise typer.BadParameter(str(e))

    if result.passed:
        typer.echo("✓ Passed")
    else:
        typer.echo(f"✗ Rejected (risk: {result.risk.name.lower()}): {result.reason}")
        raise typer.Exit(2)


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    host: Optional[str] = typer.Option(None, "--host", help="Override server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Override server port"),
) -> None:
    """
    Run the HTTP API.
    """
    import uvicorn

    from .api import create_app

    settings = _load(config_path)
    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
    )


@app.command()
def version() -> None:
    """Show the wallet version."""
    from custody_wallet import __version__
    typer.echo(f"custody-wallet v{__version__}")


def main() -> None:
    """Main entry point."""
    load_dotenv()
    app()


if __name__ == "__main__":
    main()
