import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import click

from consulop.common.config import get_settings
from consulop.common.models import AcquireResult
from consulop.errors import ConsulOpError, NotFoundError
from consulop.sync import ConsulOperator
from consulop.utils.logger import setup_logging

logger = logging.getLogger("consulop")


def _operator(ctx: click.Context) -> ConsulOperator:
    opts = ctx.obj
    cfg = get_settings().consul.model_copy()
    for field in ("agent", "name", "ip", "port", "path", "interval"):
        if opts.get(field):
            setattr(cfg, field, opts[field])
    op = ConsulOperator.from_config(cfg, backend_factory=opts.get("backend_factory"))
    return op.fix_defaults()


def _run(ctx: click.Context, body):
    """Connect an operator, run ``body(op)`` and turn library errors into exit codes."""
    async def _main():
        op = _operator(ctx)
        try:
            await op.connect()
            return await body(op)
        finally:
            await op.close()

    try:
        return asyncio.run(_main())
    except NotFoundError as e:
        click.echo(str(e), err=True)
        ctx.exit(2)
    except ConsulOpError as e:
        click.echo(f"error: {e}", err=True)
        ctx.exit(1)


def _stop_event() -> asyncio.Event:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # not on the main thread or not supported on this platform
            pass
    return stop


@click.group()
@click.option("--agent", envvar="CONSUL_AGENT", help="host:port or consul://host:port/... of the agent")
@click.option("--name", help="Own service name")
@click.option("--ip", help="Own service ip")
@click.option("--port", type=int, help="Own service port")
@click.option("--path", help="Health check path")
@click.option("--interval", help="Health check interval, e.g. 10s")
@click.pass_context
def cli(ctx, agent, name, ip, port, path, interval):
    """Consul key-value, lock and service registry client."""
    settings = get_settings()
    setup_logging(
        level=settings.logging.level,
        format_type=settings.logging.format,
        node_id=settings.node_id,
    )
    logger.debug(f"{settings.name} starting, environment {settings.environment}")
    ctx.ensure_object(dict)
    ctx.obj.update(agent=agent, name=name, ip=ip, port=port, path=path, interval=interval)


@cli.group()
def kv():
    """Key-value store."""


@kv.command("get")
@click.argument("key")
@click.option("--version", "with_version", is_flag=True, help="Also print the modify index")
@click.pass_context
def kv_get(ctx, key, with_version):
    async def body(op: ConsulOperator):
        value, version = await op.get_with_version(key)
        text = value.decode("utf-8", errors="replace")
        click.echo(f"{text}\t{version}" if with_version else text)

    _run(ctx, body)


@kv.command("put")
@click.argument("key")
@click.argument("value")
@click.pass_context
def kv_put(ctx, key, value):
    async def body(op: ConsulOperator):
        await op.put(key, value.encode("utf-8"))

    _run(ctx, body)


@kv.command("delete")
@click.argument("key")
@click.pass_context
def kv_delete(ctx, key):
    async def body(op: ConsulOperator):
        await op.delete(key)

    _run(ctx, body)


@cli.command()
@click.argument("name")
@click.option("--hold", type=float, default=None, help="Seconds to hold the lock, default until interrupted")
@click.pass_context
def lock(ctx, name, hold: Optional[float]):
    """Acquire lock NAME, hold it, then release it."""
    async def body(op: ConsulOperator):
        stop = _stop_event()
        result = await op.acquire(name, stop)
        if result is AcquireResult.CANCELLED:
            click.echo(f"lock {name}: cancelled")
            return
        click.echo(f"lock {name}: held")
        try:
            await asyncio.wait_for(stop.wait(), timeout=hold)
        except asyncio.TimeoutError:
            pass
        finally:
            await op.release(name)
        click.echo(f"lock {name}: released")

    _run(ctx, body)


@cli.command()
@click.pass_context
def services(ctx):
    """List every service name with its tags."""
    async def body(op: ConsulOperator):
        listing = await op.list_services()
        click.echo(json.dumps(listing, indent=2, sort_keys=True))

    _run(ctx, body)


@cli.command()
@click.argument("name")
@click.pass_context
def service(ctx, name):
    """List catalog entries of service NAME."""
    async def body(op: ConsulOperator):
        entries = await op.list_service(name)
        click.echo(json.dumps([e.model_dump(by_alias=True) for e in entries], indent=2))

    _run(ctx, body)


@cli.command()
@click.option("--once", is_flag=True, help="Register and exit without waiting")
@click.pass_context
def register(ctx, once):
    """Register this process as a service and deregister on SIGINT/SIGTERM."""
    async def body(op: ConsulOperator):
        if not op.name:
            raise click.UsageError("--name is required to register a service")
        await op.register_service()
        click.echo(f"service {op.name} registered")
        if once:
            return
        stop = _stop_event()
        await stop.wait()
        await op.deregister_service()
        click.echo(f"service {op.name} deregistered")

    _run(ctx, body)


def main():
    cli(obj={})


if __name__ == "__main__":
    sys.exit(main())
