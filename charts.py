import dataclasses
from typing import Callable, List

import aiohttp

from base_bot import log
from configurations import CONFIG

FONT = {'fontFamily': 'Serif', 'fontColor': 'white'}
COLOR_SCHEME = {'colorschemes': {'scheme': 'office.Celestial6'}}
CURRENCY = {'style': 'currency', 'currency': 'USD', 'minimumFractionDigits': 0}


@dataclasses.dataclass(frozen=True)
class ChartDescriptor:
    id: str
    title: str
    kind: str
    description: str
    build: Callable[[list], dict]


def title(text):
    return {'display': True, 'text': text, **FONT}


def legend(display=True, point_style=False):
    if not display:
        return {'display': False}
    return {'labels': {**FONT, 'usePointStyle': point_style}}


def value_axis(label=None, reverse=False):
    axis = {
        'gridLines': {'drawBorder': True, 'color': 'gray'},
        'ticks': {'padding': 5, 'reverse': reverse, **FONT},
    }
    if label:
        axis['scaleLabel'] = {'display': True, 'labelString': label, 'fontColor': '#191', 'fontSize': 16}
    return axis


def time_axis():
    return {
        'type': 'time',
        'time': {'isoWeekday': True, 'unit': 'day', 'displayFormats': {'day': 'DD/MM'}},
        'gridLines': {'display': False},
        'ticks': {'maxTicksLimit': 24, **FONT},
    }


def category_axis():
    return {'gridLines': {'display': False}, 'ticks': FONT}


def points(history):
    return [{'x': date.isoformat(), 'y': value} for date, value in history]


def chart(kind, text, datasets, labels=None, x_axis=None, y_axis=None, currency=False, show_legend=True,
          **options):
    config = {
        'type': kind,
        'data': {'datasets': datasets},
        'options': {
            'plugins': {**COLOR_SCHEME},
            'title': title(text),
            'legend': legend(show_legend),
            **options,
        },
    }
    if currency:
        config['options']['plugins']['tickFormat'] = CURRENCY
    if labels is not None:
        config['data']['labels'] = labels
    if x_axis or y_axis:
        config['options']['scales'] = {
            'xAxes': [x_axis or category_axis()],
            'yAxes': [y_axis or value_axis()],
        }
    return config


def alliance_growth(alliances):
    return chart('line', 'Growth History', [
        {'label': a.name, 'fill': False, 'hidden': not a.history, 'data': points(a.history)}
        for a in alliances
    ], x_axis=time_axis(), y_axis=value_axis(), currency=True)


def alliance_contribution(alliances):
    return chart('bar', 'Total contribution', [
        {'label': a.name, 'data': [a.contribution['daily'], a.contribution['season'] or 0]}
        for a in alliances
    ], labels=['Total contribution today', 'Total contribution this season'], y_axis=value_axis(), currency=True)


def alliance_members(alliances):
    annotations = [{
        'type': 'line',
        'mode': 'horizontal',
        'scaleID': 'y-axis-0',
        'value': a.min_share_value,
        'borderColor': 'red',
        'borderWidth': 2,
        'label': {'enabled': True, 'content': f'Required SV: {a.name}'},
    } for a in alliances if a.ipo_required]
    return chart('scatter', 'Alliance members', [
        {'label': a.name, 'data': [{'x': m.contribution['daily'], 'y': m.share_value} for m in a.members]}
        for a in alliances
    ], x_axis={**category_axis(), 'type': 'linear', 'scaleLabel': {'display': True, 'labelString': 'Contribution today'}},
        y_axis=value_axis('Share Value'), annotation={'annotations': annotations})


def alliance_rank(alliances):
    return chart('line', 'Alliance Rank', [{
        'label': 'Rank',
        'fill': False,
        'pointRadius': 10,
        'showLine': False,
        'backgroundColor': '#87ceeb',
        'borderColor': '#87ceeb',
        'data': [{'x': a.name, 'y': a.rank} for a in alliances],
    }], labels=[a.name for a in alliances], y_axis=value_axis(reverse=True), show_legend=False,
        elements={'point': {'pointStyle': 'star'}})


def airline_share_value(airlines):
    return chart('line', 'Share Value', [
        {'label': a.name, 'fill': False, 'hidden': not a.has_ipo, 'data': points(a.share_growth)}
        for a in airlines
    ], x_axis=time_axis(), y_axis=value_axis(), currency=True)


def airline_statistics(airlines):
    return chart('radar', 'General Statistics', [{
        'label': a.name,
        'data': [a.fleet_size, a.routes, a.level, a.achievements, a.reputation['pax'], a.reputation['cargo']],
    } for a in airlines], labels=['Fleet size', 'Routes', 'Level', 'Achievements', 'Pax reputation',
                                  'Cargo reputation'])


def airline_fleet(airlines):
    models = sorted({plane['name'] for a in airlines for plane in a.planes})
    return chart('bar', 'Fleet', [{
        'label': a.name,
        'data': [next((p['amount'] for p in a.planes if p['name'] == model), 0) for model in models],
    } for a in airlines], labels=models, y_axis=value_axis('Aircraft'))


def member_contribution_history(members):
    return chart('line', 'Daily contribution', [
        {'label': m.name, 'fill': False, 'hidden': not m.history, 'data': points(m.history)}
        for m in members
    ], x_axis=time_axis(), y_axis=value_axis(), currency=True)


def member_contribution_per_flight(members):
    return chart('bubble', 'Contribution to flights', [{
        'label': m.name,
        'data': [{'x': m.flights, 'y': m.contribution['total'], 'r': 10}],
    } for m in members], x_axis={**category_axis(), 'type': 'linear',
                                 'scaleLabel': {'display': True, 'labelString': 'Flights'}},
        y_axis=value_axis('Contribution'))


def member_share_of_contribution(members):
    return chart('bar', 'Contribution today', [{
        'label': m.name,
        'data': [m.contribution['daily']],
    } for m in members], labels=['Contribution today'], y_axis=value_axis(), currency=True)


ALLIANCE_CHARTS: List[ChartDescriptor] = [
    ChartDescriptor('alliance_growth', 'Growth History', 'Line graph',
                    "Line graph comparing the growth of the alliances from the past days. "
                    "Only alliances with collected growth data are displayed.", alliance_growth),
    ChartDescriptor('alliance_contribution', 'Contribution', 'Bar graph',
                    'Bar graph comparing the total contribution today and this season of the alliances.',
                    alliance_contribution),
    ChartDescriptor('alliance_members', 'Members', 'Scatter graph',
                    'Scatter graph comparing the contribution today and share value of the members. '
                    'The red lines display the required share value of each alliance.', alliance_members),
    ChartDescriptor('alliance_rank', 'Rank', 'Line graph',
                    'The dots display the rank of each alliance.', alliance_rank),
]

AIRLINE_CHARTS: List[ChartDescriptor] = [
    ChartDescriptor('airline_share_value', 'Share Value', 'Line graph',
                    'Line graph comparing the share value history of the airlines.', airline_share_value),
    ChartDescriptor('airline_statistics', 'General Statistics', 'Radar graph',
                    'Radar graph comparing fleet size, routes, level, achievements and reputation.',
                    airline_statistics),
    ChartDescriptor('airline_fleet', 'Fleet', 'Bar graph',
                    'Bar graph comparing the amount of each aircraft in the fleets.', airline_fleet),
]

MEMBER_CHARTS: List[ChartDescriptor] = [
    ChartDescriptor('member_contribution', 'Daily contribution', 'Line graph',
                    'Line graph comparing the daily contribution of the members from the past days.',
                    member_contribution_history),
    ChartDescriptor('member_flights', 'Contribution to flights', 'Bubble graph',
                    'Bubble graph comparing the total contribution to the amount of flights.',
                    member_contribution_per_flight),
    ChartDescriptor('member_today', 'Contribution today', 'Bar graph',
                    'Bar graph comparing the contribution of the members today.', member_share_of_contribution),
]


class ChartService:
    def __init__(self, session):
        self.session = session
        self.base_url = CONFIG.get('quickchart_url')

    async def short_url(self, config, width=800, height=400):
        payload = {
            'chart': config,
            'backgroundColor': 'transparent',
            'width': width,
            'height': height,
            'version': '2',
        }
        timeout = aiohttp.ClientTimeout(total=CONFIG.get('request_timeout_seconds', 10))
        async with self.session.post(f'{self.base_url}/chart/create', json=payload, timeout=timeout,
                                     raise_for_status=True) as r:
            data = await r.json()
        log.debug(f'[QuickChart] {config.get("type")} chart created: {data.get("url")}')
        return data['url']
