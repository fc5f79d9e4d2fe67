"""Command-line interface commands."""

import asyncio
import sys
from typing import Optional

import click

from ..database.asyncpg_factory import AsyncpgConnectionFactory
from ..database.client import init_client, is_initialized
from ..database.shared import close_pool, get_pool, test_connection
from ..exceptions import PoolError, PoolTimeoutError


def _init_client(log_level: Optional[str]) -> None:
    if not is_initialized():
        init_client(async_factory=AsyncpgConnectionFactory(), log_level=log_level)


@click.group()
@click.option('--log-level', type=str, default=None, help='Logging level (defaults to LOG_LEVEL)')
def main(log_level: Optional[str]):
    """Connection pool CLI - check and exercise the configured database pool."""
    _init_client(log_level)


@main.command('test-db')
def test_db():
    """Test database connection."""
    asyncio.run(_test_db())


async def _test_db():
    """Test database connection."""
    try:
        success = await test_connection()
        if success:
            click.echo("✅ Database connection successful!")
        else:
            click.echo("❌ Database connection failed!")
            sys.exit(1)
    finally:
        await close_pool()


@main.command()
def stats():
    """Show pool statistics after warm-up."""
    asyncio.run(_stats())


async def _stats():
    """Show statistics."""
    try:
        pool = await get_pool()
        snapshot = pool.stats()
        
        click.echo(f"📊 Pool Statistics for {pool.endpoint}:")
        click.echo(f"   Bounds: min={snapshot.min_size} max={snapshot.max_size} increment={snapshot.increment}")
        click.echo(f"   Idle: {snapshot.idle}")
        click.echo(f"   In Use: {snapshot.in_use}")
        click.echo(f"   Opened: {snapshot.opened_total}")
        click.echo(f"   Destroyed: {snapshot.destroyed_total}")
    except PoolError as e:
        click.echo(f"❌ Error getting statistics: {str(e)}")
        sys.exit(1)
    finally:
        await close_pool()


@main.command()
@click.option('--workers', default=10, help='Number of concurrent workers')
@click.option('--rounds', default=1, help='Acquire/release cycles per worker')
@click.option('--hold', default=0.05, help='Seconds each worker holds a connection')
@click.option('--timeout', default=5.0, help='Acquire timeout in seconds')
def stress(workers: int, rounds: int, hold: float, timeout: float):
    """Run concurrent acquire/release cycles against the pool."""
    asyncio.run(_stress(workers, rounds, hold, timeout))


async def _stress(workers: int, rounds: int, hold: float, timeout: float):
    """Stress the pool."""
    holders = set()
    results = {'ok': 0, 'timeout': 0, 'double': 0}
    
    async def worker():
        for _ in range(rounds):
            try:
                async with pool.acquire(timeout) as conn:
                    if conn.id in holders:
                        results['double'] += 1
                    holders.add(conn.id)
                    await asyncio.sleep(hold)
                    holders.discard(conn.id)
                results['ok'] += 1
            except PoolTimeoutError:
                results['timeout'] += 1
    
    try:
        pool = await get_pool()
        click.echo(f"🏋️  Running {workers} workers x {rounds} rounds against {pool.endpoint}...")
        await asyncio.gather(*(worker() for _ in range(workers)))
        snapshot = pool.stats()
        
        click.echo(f"✅ Completed: {results['ok']}")
        click.echo(f"⏱️  Timed out: {results['timeout']}")
        click.echo(f"📈 Pool size: {snapshot.idle + snapshot.in_use} of {snapshot.max_size}")
        if results['double']:
            click.echo(f"❌ Connection handed to two workers {results['double']} time(s)!")
            sys.exit(1)
    except PoolError as e:
        click.echo(f"❌ Error running stress test: {str(e)}")
        sys.exit(1)
    finally:
        await close_pool()
