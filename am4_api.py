import datetime

import aiohttp

from base_bot import ClientError, log
from configurations import CONFIG

INVALID_TOKEN = 'Missing or invalid access token'
DEFAULT_LOGO_URL = 'https://i.ibb.co/0JMbPBM/am-logo.png'


class AM4APIError(Exception):
    def __init__(self, status):
        super().__init__(status.get('description'))
        self.request = status.get('request')
        self.requests_remaining = status.get('requests_remaining')


def from_timestamp(value):
    return datetime.datetime.utcfromtimestamp(value)


class Status:
    def __init__(self, raw_status):
        self.success = raw_status.get('request') == 'success'
        self.error = raw_status.get('description')
        self.requests_remaining = raw_status.get('requests_remaining')

    def __repr__(self):
        return f'<Status success={self.success} error={self.error!r} remaining={self.requests_remaining}>'


class Result:
    def __init__(self, data):
        self.status = Status(data.get('status', {}))

    def raise_for_status(self):
        if not self.status.success:
            raise ClientError(self.status.error or 'The request to the Airline Manager API failed...')
        return self


class Airline(Result):
    def __init__(self, data, airline_id=None):
        super().__init__(data)
        if not self.status.success:
            return
        user = data['user']
        self.id = airline_id
        self.name = user['company']
        self.rank = user['rank']
        self.level = user['level']
        self.achievements = user['achievements']
        self.online = bool(user['online'])
        self.game_mode = user['game_mode']
        self.founded = from_timestamp(user['founded'])
        self.logo = user['logo'].split(' ')[0] if user.get('logo') else None
        self.display_logo_url = self.logo or DEFAULT_LOGO_URL
        self.alliance_name = user.get('alliance') or None
        self.reputation = {
            'pax': user['reputation'],
            'cargo': user['cargo_reputation'],
        }
        self.fleet_size = user['fleet']
        self.routes = user['routes']
        self.planes = [{'name': p['aircraft'], 'amount': p['amount']} for p in data.get('fleet', [])]
        self.has_ipo = bool(user['ipo'])
        self.share_value = user['share']
        self.shares = {
            'available': user['shares_available'],
            'sold': user['shares_sold'],
            'total': user['shares_available'] + user['shares_sold'],
        }
        self.share_growth = sorted(
            [(from_timestamp(s['date']), s['share']) for s in data.get('share_development', [])]
        )
        self.awards = [(a['award'], from_timestamp(a['awarded'])) for a in data.get('awards', [])]


class Member:
    def __init__(self, raw, in_season, position, now=None):
        now = now or datetime.datetime.utcnow()
        self.name = raw['company']
        self.position = position
        self.online = from_timestamp(raw['online'])
        self.joined = from_timestamp(raw['joined'])
        self.flights = raw['flights']
        self.share_value = raw['shareValue']
        days = abs((now - self.joined).days)
        weeks = days // 7
        contributed = raw['contributed']
        self.contribution = {
            'total': contributed,
            'daily': raw['dailyContribution'],
            'season': raw.get('season') if in_season else None,
            'average': {
                'day': contributed / days if days > 0 else contributed,
                'week': contributed / weeks if weeks > 0 else contributed,
                'flight': contributed / raw['flights'] if raw['flights'] else 0,
            },
        }
        # filled from the local history by the handlers
        self.this_week = 0
        self.days_offline = 0

    def is_offline(self, now=None):
        now = now or datetime.datetime.utcnow()
        return abs((now - self.online).total_seconds()) > 86400


class Alliance(Result):
    def __init__(self, data):
        super().__init__(data)
        self.members = []
        if not self.status.success:
            return
        alliance = data['alliance'][0]
        raw_members = data.get('members', [])
        self.in_season = bool(raw_members) and all(m.get('season') is not None for m in raw_members)
        self.name = alliance['name']
        self.rank = alliance['rank']
        self.value = alliance['value']
        self.member_count = alliance['members']
        self.max_members = alliance['maxMembers']
        self.ipo_required = bool(alliance['ipo'])
        self.min_share_value = alliance['minSV'] if alliance['ipo'] else None
        self.members = [Member(m, self.in_season, i + 1) for i, m in enumerate(raw_members)]
        self.flights = sum(m.flights for m in self.members)
        self.founded = min((m.joined for m in self.members), default=None)
        self.contribution = {
            'daily': sum(m.contribution['daily'] for m in self.members),
            'total': sum(m.contribution['total'] for m in self.members),
            'season': sum(m.contribution['season'] for m in self.members) if self.in_season else None,
        }

    def get_member(self, name):
        for member in self.members:
            if member.name.lower() == name.lower():
                return member
        return None


class AM4RestClient:
    def __init__(self, session, access_token=None):
        self.session = session
        self.access_token = access_token or CONFIG.get('am4_access_token')
        self.base_url = CONFIG.get('am4_api_url')
        self.requests_remaining = None
        self.last_request = None

    async def _get(self, **params):
        if not self.access_token:
            raise AM4APIError({'description': INVALID_TOKEN, 'request': 'failed'})
        params['access_token'] = self.access_token
        timeout = aiohttp.ClientTimeout(total=CONFIG.get('request_timeout_seconds', 10))
        async with self.session.get(self.base_url, params=params, timeout=timeout) as r:
            data = await r.json(content_type=None)
        status = data.get('status', {})
        if status.get('description') == INVALID_TOKEN:
            raise AM4APIError(status)
        self.requests_remaining = status.get('requests_remaining')
        self.last_request = datetime.datetime.utcnow()
        log.debug(f'[AM4] {", ".join(k for k in params if k != "access_token")} -> {status.get("request")}, '
                  f'{self.requests_remaining} requests remaining.')
        return data

    async def fetch_airline(self, airline):
        if isinstance(airline, int):
            data = await self._get(id=str(airline))
            return Airline(data, airline_id=airline)
        data = await self._get(user=airline)
        return Airline(data)

    async def fetch_alliance(self, name):
        data = await self._get(search=name)
        return Alliance(data)
