from locker import logger
from locker.server import server
from locker.modules.clock import now_ms
from locker.server.abuse_guard import purge_stale_visits
from locker.server.gate import purge_stale_gate_sessions
from locker.server.sponsors import reconcile_sponsor_limits
import asyncio

async def cleanup_stale_visits():
    """Background task to drop IP records older than the abuse window every 30 minutes"""
    while True:
        try:
            await asyncio.sleep(1800)
            deleted_count = await purge_stale_visits(now_ms())
            if deleted_count > 0:
                logger.info(f'Cleaned up {deleted_count} stale visit records')
        except Exception as e:
            logger.error(f'Error in visit cleanup task: {e}')

async def cleanup_gate_sessions():
    """Background task to remove expired gate sessions every hour"""
    while True:
        try:
            await asyncio.sleep(3600)
            deleted_count = await purge_stale_gate_sessions()
            if deleted_count > 0:
                logger.info(f'Cleaned up {deleted_count} expired gate sessions')
        except Exception as e:
            logger.error(f'Error in gate session cleanup task: {e}')

async def reconcile_sponsors():
    """Background task enforcing the active sponsor cap every 10 minutes"""
    while True:
        try:
            await asyncio.sleep(600)
            deactivated = await reconcile_sponsor_limits()
            if deactivated > 0:
                logger.warning(f'Deactivated {deactivated} surplus sponsors')
        except Exception as e:
            logger.error(f'Error in sponsor reconciliation task: {e}')

async def main():
    tasks = [
        asyncio.create_task(cleanup_stale_visits()),
        asyncio.create_task(cleanup_gate_sessions()),
        asyncio.create_task(reconcile_sponsors()),
    ]
    try:
        await server.serve()
    finally:
        for task in tasks:
            task.cancel()

if __name__ == '__main__':
    logger.info('initializing...')
    asyncio.run(main())
