from discord.ext import tasks

from base_bot import log
from configurations import CONFIG
from jobs.alliance_tracker import AllianceTracker


@tasks.loop(hours=CONFIG.get('alliance_update_hours'), reconnect=False)
async def task_update_alliances(discord_client):
    try:
        tracker = AllianceTracker(discord_client.session)
        await tracker.update()
    except Exception as e:
        log.error('Could not update alliance data. Stacktrace follows.')
        log.exception(e)


@task_update_alliances.before_loop
async def wait_until_ready(discord_client):
    await discord_client.wait_until_ready()
