import asyncio
import re
from enum import Enum

import aiohttp

from sorting import MEMBER_SORT_FIELDS, ORDERS

API_URL = 'https://discord.com/api/v10'


class CommandType(Enum):
    CHAT_INPUT = 1
    USER = 2
    MESSAGE = 3


class OptionType(Enum):
    SUB_COMMAND = 1
    SUB_COMMAND_GROUP = 2
    STRING = 3
    INTEGER = 4
    BOOLEAN = 5
    USER = 6
    CHANNEL = 7
    ROLE = 8


def option(name, description, option_type=OptionType.STRING, required=False, choices=None, **kwargs):
    result = {
        'name': name,
        'description': description,
        'type': option_type.value,
        'required': required,
    }
    if choices is not None:
        result['choices'] = choices
    result.update(kwargs)
    return result


def numbered_options(prefix, description, amount=5, required=2):
    return [option(f'{prefix}_{i}', description, required=i <= required) for i in range(1, amount + 1)]


STANDARD_OPTIONS = {
    'airline_name': option('name', 'The username of the airline. Only fill in one of the 2 arguments.'),
    'airline_id': option('id', 'The ID of the airline. Only fill in one of the 2 arguments.', OptionType.INTEGER),
    'alliance_name': option('name', 'The name of the alliance'),
    'user': option('user', 'The user to look up', OptionType.USER),
}

QUIZ_GAMES = [
    {'name': 'Aviation Quiz', 'value': '609283a37e9f153dd4b179ff'},
    {'name': 'Plane Quiz', 'value': '60927a92495d01598046c4e0'},
    {'name': 'Logo Quiz', 'value': '609280e6615e5c48e0f072e8'},
    {'name': 'AM4 Quiz', 'value': '6092836e453b632458e1521d'},
    {'name': 'Airport Quiz', 'value': '60e5e4c4d6b9af4a969b1eb4'},
]

COMMAND_REGISTRY = [
    {
        'name': 'airline',
        'description': 'Search or compare airlines',
        'cooldown': 20,
        'subcommands': [
            {
                'name': 'search',
                'function': 'airline_search',
                'description': 'Search for an airline. Without arguments shows your own airline.',
                'options': [STANDARD_OPTIONS['airline_name'], STANDARD_OPTIONS['airline_id']],
            },
            {
                'name': 'compare',
                'function': 'airline_compare',
                'description': 'Compare up to five airlines',
                'options': numbered_options('airline', 'The username of the airline'),
            },
        ],
    },
    {
        'name': 'alliance',
        'description': 'Search and compare alliances and their members',
        'cooldown': 20,
        'subcommands': [
            {
                'name': 'search',
                'function': 'alliance_search',
                'description': 'Search for an alliance. Without arguments shows the alliance of your airline.',
                'options': [STANDARD_OPTIONS['alliance_name']],
            },
            {
                'name': 'compare',
                'function': 'alliance_compare',
                'description': 'Compare up to five alliances',
                'options': numbered_options('alliance', 'The name of the alliance'),
            },
            {
                'name': 'members',
                'description': "Search, compare and sort an alliance's members",
                'subcommands': [
                    {
                        'name': 'sort',
                        'function': 'alliance_members_sort',
                        'description': "Sort an alliance's members",
                        'options': [
                            option('alliance', 'The name of the alliance', required=True),
                            option('sort', 'The statistic to sort members by', required=True,
                                   choices=[{'name': f.label, 'value': k} for k, f in MEMBER_SORT_FIELDS.items()]),
                            option('order', 'Whether to sort members in ascending or descending order. '
                                            'By default sorted in descending order.',
                                   choices=[{'name': label, 'value': k} for k, label in ORDERS.items()]),
                            option('amount', 'The amount of members (1-60) to display. By default all members.',
                                   OptionType.INTEGER, min_value=1, max_value=60),
                        ],
                    },
                    {
                        'name': 'search',
                        'function': 'alliance_members_search',
                        'description': 'Search for a specific alliance member',
                        'options': [STANDARD_OPTIONS['airline_name'], STANDARD_OPTIONS['airline_id']],
                    },
                    {
                        'name': 'compare',
                        'function': 'alliance_members_compare',
                        'description': 'Compare up to five alliance members',
                        'options': numbered_options('member', 'The username of the member'),
                    },
                ],
            },
        ],
    },
    {
        'name': 'Airline',
        'type': CommandType.USER,
        'function': 'airline_context',
        'cooldown': 20,
    },
    {
        'name': 'Compare Airline',
        'type': CommandType.USER,
        'function': 'compare_airline_context',
        'cooldown': 20,
    },
    {
        'name': 'Alliance',
        'type': CommandType.USER,
        'function': 'alliance_context',
        'cooldown': 10,
    },
    {
        'name': 'Compare Alliance',
        'type': CommandType.USER,
        'function': 'compare_alliance_context',
        'cooldown': 20,
    },
    {
        'name': 'Member',
        'type': CommandType.USER,
        'function': 'member_context',
        'cooldown': 10,
    },
    {
        'name': 'Compare Member',
        'type': CommandType.USER,
        'function': 'compare_member_context',
        'cooldown': 20,
    },
    {
        'name': 'Urban',
        'type': CommandType.MESSAGE,
        'function': 'urban_context',
        'cooldown': 5,
    },
    {
        'name': 'user',
        'description': 'Manage your AM4 Bot account',
        'cooldown': 10,
        'subcommands': [
            {
                'name': 'login',
                'function': 'user_login',
                'description': 'Save your airline to your account',
                'options': [option('id', 'The ID of your airline', OptionType.INTEGER, required=True)],
            },
            {
                'name': 'logout',
                'function': 'user_logout',
                'description': 'Remove your airline from your account',
            },
            {
                'name': 'view',
                'function': 'user_view',
                'description': "View your or someone else's account",
                'options': [STANDARD_OPTIONS['user']],
            },
        ],
    },
    {
        'name': 'urban',
        'function': 'urban',
        'description': 'Search the urban dictionary',
        'cooldown': 10,
        'options': [option('term', 'The word/sentence that you want to search for', required=True)],
    },
    {
        'name': 'generate',
        'description': 'Generate random jokes or facts',
        'cooldown': 10,
        'subcommands': [
            {
                'name': 'fact',
                'function': 'generate_fact',
                'description': 'Generate a random useless fact',
            },
        ],
    },
    {
        'name': 'createqr',
        'function': 'create_qr',
        'description': 'Create a QR code',
        'cooldown': 10,
        'options': [
            option('text', 'The URL that the QR-code leads to', required=True),
            option('name', 'The name of the QR-code file that will be uploaded. Only letters!', required=True),
            option('format', 'Image output format (default: PNG)',
                   choices=[{'name': 'PNG image', 'value': 'png'}, {'name': 'SVG image', 'value': 'svg'}]),
            option('dark', 'The colour of the code (HEX colour code)'),
            option('light', 'The colour of the background (HEX colour code)'),
            option('size', 'The size of the image in pixels', OptionType.INTEGER, min_value=50, max_value=1000),
            option('margin', 'The whitespace around the code in pixels', OptionType.INTEGER, min_value=0,
                   max_value=50),
            option('ec_level', 'Error correction level (default: M)',
                   choices=[{'name': f'Level {level}', 'value': level} for level in 'LMQH']),
        ],
    },
    {
        'name': 'quiz',
        'description': 'Play and compete in AM4 Bot quiz games',
        'cooldown': 30,
        'subcommands': [
            {
                'name': 'play',
                'function': 'quiz_play',
                'description': 'Play quiz games and earn points',
                'options': [
                    option('game', 'The quiz game that you want to play', required=True, choices=QUIZ_GAMES),
                    option('difficulty', 'The difficulty level of the quiz. By default normal.',
                           choices=[{'name': m.capitalize(), 'value': m} for m in ('easy', 'normal', 'hard')]),
                    option('time', 'The maximum time to answer in seconds (10-30). By default 20 seconds.',
                           OptionType.INTEGER, min_value=10, max_value=30),
                    option('rounds', 'The amount of rounds in this game (2-15). By default 5 rounds.',
                           OptionType.INTEGER, min_value=2, max_value=15),
                ],
            },
            {
                'name': 'leaderboard',
                'function': 'quiz_leaderboard',
                'description': 'View leaderboards',
                'options': [
                    option('type', 'The type of leaderboard that you would like to get', required=True,
                           choices=[{'name': 'Quiz Points', 'value': 'points'},
                                    {'name': 'Monthly Score', 'value': 'score'}]),
                ],
            },
            {
                'name': 'points',
                'function': 'quiz_points',
                'description': "Look up your or someone else's points",
                'options': [STANDARD_OPTIONS['user']],
            },
        ],
    },
    {
        'name': 'settings',
        'description': 'Server settings',
        'cooldown': 5,
        'subcommands': [
            {
                'name': 'channel',
                'function': 'settings_channel',
                'description': 'Whitelist or blacklist a channel for public bot replies',
                'options': [
                    option('action', 'Add or remove the channel', required=True,
                           choices=[{'name': 'Add', 'value': 'add'}, {'name': 'Remove', 'value': 'remove'}]),
                    option('channel', 'The channel', OptionType.CHANNEL, required=True),
                    option('list', 'The list to add the channel to',
                           choices=[{'name': 'Whitelist', 'value': 'whitelist'},
                                    {'name': 'Blacklist', 'value': 'blacklist'}]),
                ],
            },
        ],
    },
    {
        'name': 'about',
        'function': 'about',
        'description': 'Shows general information about the bot',
        'cooldown': 5,
    },
]

COMPONENT_REGISTRY = [
    {
        'function': 'airline_component',
        'pattern': re.compile(r'^airline:(?P<airline_id>\d+)$'),
        'cooldown': 10,
    },
]


def find_command(path, command_type=CommandType.CHAT_INPUT.value):
    """Walk the registry along ``path`` (command, group, subcommand) and return the leaf entry."""
    candidates = [c for c in COMMAND_REGISTRY if c.get('type', CommandType.CHAT_INPUT).value == command_type]
    entry = None
    cooldown = 0
    for name in path:
        entry = next((c for c in candidates if c['name'] == name), None)
        if entry is None:
            return None
        cooldown = entry.get('cooldown', cooldown)
        candidates = entry.get('subcommands', [])
    if entry is None or 'function' not in entry:
        return None
    return {**entry, 'cooldown': cooldown, 'path': ' '.join(path)}


def find_component(custom_id):
    for component in COMPONENT_REGISTRY:
        if match := component['pattern'].match(custom_id):
            return component, match.groupdict()
    return None, None


def _subcommand_payload(entry):
    if 'subcommands' in entry:
        return {
            'name': entry['name'],
            'description': entry['description'],
            'type': OptionType.SUB_COMMAND_GROUP.value,
            'options': [_subcommand_payload(s) for s in entry['subcommands']],
        }
    return {
        'name': entry['name'],
        'description': entry['description'],
        'type': OptionType.SUB_COMMAND.value,
        'options': entry.get('options', []),
    }


def command_payload(command):
    command_type = command.get('type', CommandType.CHAT_INPUT)
    payload = {'name': command['name'], 'type': command_type.value}
    if command_type != CommandType.CHAT_INPUT:
        return payload
    payload['description'] = command['description']
    if 'subcommands' in command:
        payload['options'] = [_subcommand_payload(s) for s in command['subcommands']]
    else:
        payload['options'] = command.get('options', [])
    return payload


def options_signature(options):
    return [
        (o['name'], o['type'], o.get('required', False), o.get('description'),
         tuple(c['value'] for c in o.get('choices', [])), options_signature(o.get('options', [])))
        for o in options or []
    ]


def command_changed(theirs):
    mine = next((command_payload(c) for c in COMMAND_REGISTRY
                 if c['name'] == theirs['name'] and c.get('type', CommandType.CHAT_INPUT).value == theirs.get('type', 1)),
                None)
    if mine is None:
        return True
    if theirs.get('description', '') != mine.get('description', ''):
        return True
    return options_signature(theirs.get('options')) != options_signature(mine.get('options'))


def _commands_url(bot_id, guild_id):
    url = f'{API_URL}/applications/{bot_id}'
    url += f'/guilds/{guild_id}/commands' if guild_id else '/commands'
    return url


async def add_slash_command(bot_id, bot_token: str, guild_id, payload: dict):
    """
    A coroutine that sends an application command add request to Discord API.
    :param bot_id: User ID of the bot.
    :param bot_token: Token of the bot.
    :param guild_id: ID of the guild to add command. Pass `None` to add global command.
    :param payload: The command as built by :func:`command_payload`.
    :return: JSON Response of the request.
    """
    url = _commands_url(bot_id, guild_id)
    async with aiohttp.ClientSession() as session:
        async with session.post(url, headers={'Authorization': f'Bot {bot_token}'}, json=payload) as resp:
            if resp.status == 429:
                _json = await resp.json()
                await asyncio.sleep(_json['retry_after'])
                return await add_slash_command(bot_id, bot_token, guild_id, payload)
            if not 200 <= resp.status < 300:
                raise RuntimeError(resp.status, await resp.text())
            return await resp.json()


async def remove_slash_command(bot_id, bot_token, guild_id, cmd_id):
    url = f'{_commands_url(bot_id, guild_id)}/{cmd_id}'
    async with aiohttp.ClientSession() as session:
        async with session.delete(url, headers={'Authorization': f'Bot {bot_token}'}) as resp:
            if resp.status == 429:
                _json = await resp.json()
                await asyncio.sleep(_json['retry_after'])
                return await remove_slash_command(bot_id, bot_token, guild_id, cmd_id)
            if not 200 <= resp.status < 300:
                raise RuntimeError(resp.status, await resp.text())
            return resp.status


async def get_all_commands(bot_id, bot_token, guild_id):
    url = _commands_url(bot_id, guild_id)
    async with aiohttp.ClientSession() as session:
        async with session.get(url, headers={'Authorization': f'Bot {bot_token}'}) as resp:
            if resp.status == 429:
                _json = await resp.json()
                await asyncio.sleep(_json['retry_after'])
                return await get_all_commands(bot_id, bot_token, guild_id)
            if not 200 <= resp.status < 300:
                raise RuntimeError(resp.status, await resp.text())
            return await resp.json()
