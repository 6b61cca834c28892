import datetime

from am4_api import AM4RestClient
from base_bot import log
from models.alliance_history import AllianceHistory


class AllianceTracker:
    """
    Daily snapshot of every tracked alliance: alliance value, member contribution deltas,
    share values and offline days. Alliances that can no longer be fetched get archived.
    """

    def __init__(self, session, access_token=None):
        self.rest = AM4RestClient(session, access_token)
        self.stats = {'alliances': 0, 'members': 0, 'new_members': 0, 'archived': 0}

    async def update_alliance(self, alliance_row, today):
        alliance = await self.rest.fetch_alliance(alliance_row['name'])
        if not alliance.status.success:
            log.error(f'Failed to update the data of {alliance_row["name"]}: {alliance.status!r}')
            AllianceHistory.archive(alliance_row['id'])
            self.stats['archived'] += 1
            return
        AllianceHistory.add_value(alliance_row['id'], alliance.value, today)
        for member in alliance.members:
            is_new = AllianceHistory.record_member(
                alliance_row['id'], member.name, member.joined, member.flights, member.contribution['total'],
                member.share_value, member.is_offline(today), today)
            self.stats['new_members' if is_new else 'members'] += 1
        self.stats['alliances'] += 1

    async def update(self, today=None):
        today = today or datetime.datetime.utcnow()
        for alliance_row in AllianceHistory.tracked():
            await self.update_alliance(alliance_row, today)
        expired = AllianceHistory.purge_expired(today)
        log.info(f'Updated the data of {self.stats["alliances"]} alliances and {self.stats["members"]} members. '
                 f'Inserted {self.stats["new_members"]} new members, archived {self.stats["archived"]} alliances, '
                 f'removed {expired} expired members. Requests remaining: {self.rest.requests_remaining}')
        return self.stats
