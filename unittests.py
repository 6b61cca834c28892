import asyncio
import datetime
import os
import tempfile
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord

from am4_api import AM4APIError, AM4RestClient, Airline, Alliance
from base_bot import BaseBot, ClientError, EmbedLimitsExceed, respond
from bot import AM4Bot
from charts import AIRLINE_CHARTS, ALLIANCE_CHARTS, MEMBER_CHARTS, ChartDescriptor, ChartService
from command_registry import COMMAND_REGISTRY, CommandType, command_changed, command_payload, find_command, \
    find_component
from configurations import CONFIG
from jobs.alliance_tracker import AllianceTracker
from locks import Cooldowns, KeyedLock
from lookups import Lookups, link_terms
from models import DB
from models.alliance_history import AllianceHistory
from models.quiz import Quiz
from models.server_settings import ServerSettings
from models.user import User
from quiz import GAME_RUNNING, QuizGame, QuizManager
from sessions import ChartCarouselSession, ConfirmSession, SortedListSession
from sorting import SortState
from util import abbreviate, reflow, short_delta, split_evenly
from views import Views

NOW = datetime.datetime(2024, 3, 10, 12, 0, 0)


def make_interaction(user_id=1, done=False, deferred=False, data=None):
    interaction = MagicMock()
    interaction.user.id = user_id
    interaction.user.name = 'pilot'
    interaction.user.bot = False
    interaction.guild = None
    interaction.guild_id = None
    interaction.channel = None
    interaction.channel_id = None
    interaction.data = data or {}
    interaction.response.is_done = MagicMock(return_value=done or deferred)
    interaction.response.type = discord.InteractionResponseType.deferred_channel_message if deferred else None
    interaction.response.send_message = AsyncMock()
    interaction.response.edit_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.edit_original_response = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


def make_member(name, flights=10, total=1000, daily=100, share_value=10.0, joined=NOW, this_week=0):
    return SimpleNamespace(name=name, flights=flights, share_value=share_value, joined=joined, online=NOW,
                           this_week=this_week, days_offline=0,
                           contribution={'total': total, 'daily': daily, 'season': None,
                                         'average': {'day': total / 10, 'week': total, 'flight': total / flights}})


def make_airline(name, alliance_name=None, requests_remaining=10):
    airline = SimpleNamespace(name=name, alliance_name=alliance_name, has_ipo=False, share_growth=[],
                              status=SimpleNamespace(success=True, error=None,
                                                     requests_remaining=requests_remaining))
    airline.raise_for_status = lambda: airline
    return airline


def idle_deadline(view):
    return next(value for key, value in vars(view).items() if key.endswith('__timeout_expiry'))


class FakeResponse:
    def __init__(self, data=None, content=b''):
        self.data = data
        self.content = content

    async def json(self, content_type=None):
        return self.data

    async def read(self):
        return self.content

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class DatabaseMixin:
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        patcher = patch.dict(CONFIG.environment, {'database': os.path.join(self.tmp.name, 'am4bot.sqlite')})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self.tmp.cleanup)
        DB.create_tables()


class ReflowTests(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(reflow([]), [])

    def test_single_group_when_fitting(self):
        lines = ['a' * 100] * 5
        self.assertEqual(reflow(lines, 1000), [lines])

    def test_minimal_groups_keep_order(self):
        lines = [str(i) * 300 for i in range(10)]
        groups = reflow(lines, 1000)
        self.assertEqual(len(groups), 4)
        self.assertEqual(sum(groups, []), lines)
        for group in groups:
            self.assertLessEqual(len('\n'.join(group)), 1000)

    def test_line_breaks_count_against_budget(self):
        lines = ['a' * 100] * 10
        groups = reflow(lines, 1000)
        self.assertEqual(len(groups), 2)
        self.assertTrue(all(len('\n'.join(group)) <= 1000 for group in groups))

    def test_oversized_line(self):
        self.assertEqual(reflow(['x' * 2000], 1000), [['x' * 2000]])

    def test_split_evenly(self):
        self.assertEqual(split_evenly(list(range(7)), 3), [[0, 1, 2], [3, 4], [5, 6]])
        self.assertEqual(split_evenly(list(range(4)), 2), [[0, 1], [2, 3]])
        self.assertEqual(split_evenly([1, 2], 1), [[1, 2]])


class FormattingTests(unittest.TestCase):
    def test_abbreviate(self):
        self.assertEqual(abbreviate(999), '999')
        self.assertEqual(abbreviate(1500), '1.5k')
        self.assertEqual(abbreviate(2000), '2k')
        self.assertEqual(abbreviate(1234567), '1.2m')

    def test_short_delta(self):
        self.assertEqual(short_delta(NOW - datetime.timedelta(seconds=40), NOW), '40s')
        self.assertEqual(short_delta(NOW - datetime.timedelta(seconds=90), NOW), '1min')
        self.assertEqual(short_delta(NOW - datetime.timedelta(days=3), NOW), '3d')


class RespondTests(unittest.IsolatedAsyncioTestCase):
    async def test_fresh_interaction(self):
        interaction = make_interaction()
        await respond(interaction, 'hello', ephemeral=True)
        interaction.response.send_message.assert_awaited_once_with('hello', ephemeral=True)

    async def test_deferred_interaction(self):
        interaction = make_interaction(deferred=True)
        await respond(interaction, 'hello')
        interaction.edit_original_response.assert_awaited_once_with(content='hello')
        interaction.response.send_message.assert_not_awaited()

    async def test_answered_interaction(self):
        interaction = make_interaction(done=True)
        await respond(interaction, 'hello', ephemeral=True)
        interaction.followup.send.assert_awaited_once_with('hello', ephemeral=True)

    async def test_client_error_is_delivered_verbatim(self):
        interaction = make_interaction()

        async def fail(_):
            raise ClientError('Airline not found')

        await BaseBot.guarded('airline search', interaction, fail)
        interaction.response.send_message.assert_awaited_once_with('Airline not found', ephemeral=False)

    async def test_unexpected_error_is_logged(self):
        interaction = make_interaction()

        async def crash(_):
            raise RuntimeError('boom')

        with self.assertLogs('base_bot', level='ERROR') as logs:
            await BaseBot.guarded('airline search', interaction, crash)
        self.assertIn('airline search', logs.output[0])
        message = interaction.response.send_message.call_args.args[0]
        self.assertTrue(message.startswith('An unknown error occurred.'))
        self.assertIn(CONFIG.get('support_invite'), message)

    async def test_oversized_embed_is_reported(self):
        interaction = make_interaction()

        async def render(_):
            Views().render_sorted_list('Members', [['x' * 1100]])

        with self.assertLogs('base_bot', level='WARNING') as logs:
            await BaseBot.guarded('alliance members sort', interaction, render)
        self.assertIn('embed limits exceed', logs.output[0])
        interaction.response.send_message.assert_awaited_once_with(
            'Could not post response, embed limits exceed: Field value too long: 1100.', ephemeral=False)

    async def test_undeliverable_error_is_logged(self):
        interaction = make_interaction()
        interaction.response.send_message.side_effect = discord.HTTPException(MagicMock(status=404), 'gone')
        with self.assertLogs('base_bot', level='WARNING'):
            await ClientError('Nope').send(interaction)


class ChartCarouselTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.charts = [
            ChartDescriptor('first', 'First', 'Line graph', 'The first chart', lambda e: {'type': 'line'}),
            ChartDescriptor('second', 'Second', 'Bar graph', 'The second chart', lambda e: {'type': 'bar'}),
        ]
        self.chart_service = MagicMock()
        self.chart_service.short_url = AsyncMock(side_effect=lambda config: f'https://quickchart.io/{config["type"]}')
        self.views = MagicMock()
        self.views.render_chart = MagicMock(side_effect=lambda chart, url, footer: f'embed:{chart.id}')

    async def start_session(self):
        session = ChartCarouselSession(1, self.charts, [], self.chart_service, self.views)
        interaction = make_interaction()
        await session.start(interaction)
        return session, interaction

    async def test_start(self):
        session, interaction = await self.start_session()
        interaction.response.send_message.assert_awaited_once_with(None, ephemeral=False, view=session,
                                                                   embed='embed:first')
        self.assertIs(session.interaction, interaction)
        self.assertTrue(session.select.options[0].default)

    async def test_owner_selects_chart(self):
        session, _ = await self.start_session()
        event = make_interaction(data={'custom_id': 'chart', 'values': ['1']})
        await session.on_event(event)
        self.assertEqual(session.state, 1)
        event.response.edit_message.assert_awaited_once_with(embed='embed:second', view=session)
        self.assertTrue(session.select.options[1].default)
        self.assertFalse(session.select.options[0].default)

    async def test_chart_urls_are_memoized(self):
        session, _ = await self.start_session()
        for value in ('1', '0', '1'):
            await session.on_event(make_interaction(data={'custom_id': 'chart', 'values': [value]}))
        self.assertEqual(self.chart_service.short_url.await_count, 2)

    async def test_foreign_user_is_ignored(self):
        session, _ = await self.start_session()
        event = make_interaction(user_id=2, data={'custom_id': 'chart', 'values': ['1']})
        await session.on_event(event)
        self.assertEqual(session.state, 0)
        event.response.edit_message.assert_not_awaited()

    async def test_foreign_click_keeps_idle_timer(self):
        session, _ = await self.start_session()
        self.assertFalse(await session.interaction_check(make_interaction(user_id=2)))
        self.assertTrue(await session.interaction_check(make_interaction(user_id=1)))
        deadline = idle_deadline(session)
        session.select.callback = AsyncMock()
        event = make_interaction(user_id=2, data={'custom_id': 'chart', 'component_type': 3, 'values': ['1']})
        await session._scheduled_task(session.select, event)
        session.select.callback.assert_not_awaited()
        self.assertEqual(idle_deadline(session), deadline)

    async def test_invalid_selection(self):
        session, _ = await self.start_session()
        event = make_interaction(data={'custom_id': 'chart', 'values': ['7']})
        await session.on_event(event)
        event.response.send_message.assert_awaited_once_with('That chart does not exist...', ephemeral=True)
        self.assertEqual(session.state, 0)

    async def test_render_failure_keeps_session_open(self):
        session, _ = await self.start_session()
        self.chart_service.short_url.side_effect = RuntimeError('quickchart down')
        event = make_interaction(data={'custom_id': 'chart', 'values': ['1']})
        with self.assertLogs('base_bot', level='ERROR'):
            await session.on_event(event)
        self.assertEqual(session.state, 0)
        self.assertFalse(session.closed)
        self.assertTrue(event.response.send_message.call_args.args[0].startswith('An unknown error occurred.'))

    async def test_close_is_idempotent(self):
        session, interaction = await self.start_session()
        await session.close()
        await session.close('idle')
        interaction.edit_original_response.assert_awaited_once_with(view=session)
        self.assertEqual(session.close_reason, 'explicit')
        self.assertTrue(all(item.disabled for item in session.children))

    async def test_idle_timeout(self):
        session, interaction = await self.start_session()
        await session.on_timeout()
        self.assertTrue(session.closed)
        self.assertEqual(session.close_reason, 'idle')
        self.assertTrue(all(item.disabled for item in session.children))
        event = make_interaction(data={'custom_id': 'chart', 'values': ['1']})
        await session.on_event(event)
        event.response.edit_message.assert_not_awaited()

    async def test_failed_finalization_is_logged(self):
        session, interaction = await self.start_session()
        interaction.edit_original_response.side_effect = discord.HTTPException(MagicMock(status=404), 'gone')
        with self.assertLogs('base_bot', level='WARNING'):
            await session.close()
        self.assertTrue(session.closed)


class SortedListTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.members = [make_member('Alpha', flights=5, total=300), make_member('Bravo', flights=50, total=100),
                        make_member('Charlie', flights=20, total=200)]

    def test_sort_state(self):
        state = SortState('flights', 'desc', 2)
        self.assertEqual([m.name for m in state.apply(self.members)], ['Bravo', 'Charlie'])
        state = SortState('contribution_total', 'asc')
        self.assertEqual(state.format_rows(self.members)[0], '**1.** Bravo (*$100*)')

    def test_unknown_keys(self):
        with self.assertRaises(KeyError):
            SortState('altitude')
        with self.assertRaises(KeyError):
            SortState('flights', 'sideways')

    async def test_change_sort_field(self):
        views = MagicMock()
        views.render_sorted_list = MagicMock(return_value='embed')
        session = SortedListSession(1, self.members, SortState('flights'), 'Members', views)
        await session.start(make_interaction())
        event = make_interaction(data={'custom_id': 'order', 'values': ['asc']})
        await session.on_event(event)
        self.assertEqual(session.state, SortState('flights', 'asc'))
        groups = views.render_sorted_list.call_args.args[1]
        self.assertEqual(groups[0][0], '**1.** Alpha (*5*)')
        event.response.edit_message.assert_awaited_once_with(embed='embed', view=session)

    async def test_oversized_rendering_keeps_state(self):
        views = MagicMock()
        views.render_sorted_list = MagicMock(side_effect=['embed', EmbedLimitsExceed('Field value too long: 1100')])
        session = SortedListSession(1, self.members, SortState('flights'), 'Members', views)
        await session.start(make_interaction())
        event = make_interaction(data={'custom_id': 'order', 'values': ['asc']})
        with self.assertLogs('base_bot', level='WARNING'):
            await session.on_event(event)
        self.assertEqual(session.state, SortState('flights'))
        event.response.send_message.assert_awaited_once_with(
            'Could not post response, embed limits exceed: Field value too long: 1100.', ephemeral=True)


class ConfirmSessionTests(unittest.IsolatedAsyncioTestCase):
    async def test_start_button(self):
        on_confirm = AsyncMock()
        session = ConfirmSession(1, on_confirm, 'embed')
        interaction = make_interaction()
        await session.start(interaction)
        event = make_interaction(data={'custom_id': 'start'})
        await session.on_event(event)
        on_confirm.assert_awaited_once_with(event)
        self.assertEqual(session.close_reason, 'explicit')
        self.assertTrue(session.start_button.disabled)

    async def test_cancel_button(self):
        on_confirm = AsyncMock()
        session = ConfirmSession(1, on_confirm, 'embed')
        await session.start(make_interaction())
        event = make_interaction(data={'custom_id': 'cancel'})
        await session.on_event(event)
        on_confirm.assert_not_awaited()
        event.followup.send.assert_awaited_once_with('Game cancelled...')

    async def test_confirm_error_is_reported(self):
        on_confirm = AsyncMock(side_effect=ClientError(GAME_RUNNING))
        session = ConfirmSession(1, on_confirm, 'embed')
        await session.start(make_interaction())
        event = make_interaction(done=True, data={'custom_id': 'start'})
        await session.on_event(event)
        event.followup.send.assert_awaited_once_with(GAME_RUNNING, ephemeral=False)


class AM4APITests(unittest.IsolatedAsyncioTestCase):
    ALLIANCE = {
        'status': {'request': 'success', 'requests_remaining': 812},
        'alliance': [{'name': 'Star Alliance', 'rank': 3, 'value': 120.5, 'members': 2, 'maxMembers': 60,
                      'ipo': 1, 'minSV': 150}],
        'members': [
            {'company': 'Pilot', 'online': 1710000000, 'joined': 1700000000, 'flights': 100, 'shareValue': 200.0,
             'contributed': 50000, 'dailyContribution': 1200, 'season': 30000},
            {'company': 'Navigator', 'online': 1700000000, 'joined': 1690000000, 'flights': 0, 'shareValue': 160.0,
             'contributed': 0, 'dailyContribution': 0, 'season': 0},
        ],
    }

    def test_failed_status(self):
        airline = Airline({'status': {'request': 'failed', 'description': 'Airline not found'}})
        with self.assertRaises(ClientError) as context:
            airline.raise_for_status()
        self.assertEqual(context.exception.message, 'Airline not found')

    def test_alliance(self):
        alliance = Alliance(self.ALLIANCE).raise_for_status()
        self.assertTrue(alliance.in_season)
        self.assertEqual(alliance.min_share_value, 150)
        self.assertEqual(alliance.contribution['daily'], 1200)
        self.assertEqual(alliance.get_member('pilot').position, 1)
        self.assertEqual(alliance.get_member('Navigator').contribution['average']['flight'], 0)
        self.assertIsNone(alliance.get_member('Nobody'))

    async def test_fetch_alliance(self):
        session = MagicMock()
        session.get = MagicMock(return_value=FakeResponse(self.ALLIANCE))
        client = AM4RestClient(session, access_token='secret')
        alliance = await client.fetch_alliance('Star Alliance')
        self.assertEqual(alliance.name, 'Star Alliance')
        self.assertEqual(client.requests_remaining, 812)
        self.assertEqual(session.get.call_args.kwargs['params'], {'search': 'Star Alliance', 'access_token': 'secret'})

    async def test_fetch_airline_by_id(self):
        session = MagicMock()
        session.get = MagicMock(return_value=FakeResponse({'status': {'request': 'failed',
                                                                      'description': 'Airline not found'}}))
        client = AM4RestClient(session, access_token='secret')
        airline = await client.fetch_airline(1234)
        self.assertFalse(airline.status.success)
        self.assertEqual(session.get.call_args.kwargs['params']['id'], '1234')

    async def test_missing_token(self):
        client = AM4RestClient(MagicMock(), access_token='secret')
        client.access_token = None
        with self.assertRaises(AM4APIError):
            await client.fetch_alliance('Star Alliance')


class LockTests(unittest.TestCase):
    def test_keyed_lock(self):
        lock = KeyedLock()
        with lock.hold(1, GAME_RUNNING):
            self.assertTrue(lock.locked(1))
            self.assertFalse(lock.locked(2))
            with self.assertRaises(ClientError):
                with lock.hold(1, GAME_RUNNING):
                    pass
        self.assertFalse(lock.locked(1))

    def test_keyed_lock_released_on_error(self):
        lock = KeyedLock()
        with self.assertRaises(RuntimeError):
            with lock.hold(1, GAME_RUNNING):
                raise RuntimeError()
        self.assertTrue(lock.acquire(1))

    def test_command_cooldown(self):
        cooldowns = Cooldowns(global_seconds=60, max_parallel=3)
        cooldowns.check(1, 'about', 5, NOW)
        with self.assertRaises(ClientError):
            cooldowns.check(1, 'about', 5, NOW + datetime.timedelta(seconds=2))
        cooldowns.check(2, 'about', 5, NOW)
        cooldowns.check(1, 'about', 5, NOW + datetime.timedelta(seconds=6))

    def test_global_cooldown(self):
        cooldowns = Cooldowns(global_seconds=60, max_parallel=3)
        for command in ('a', 'b', 'c', 'd', 'e'):
            cooldowns.check(1, command, 30, NOW)
        with self.assertRaises(ClientError) as context:
            cooldowns.check(1, 'f', 30, NOW + datetime.timedelta(seconds=1))
        self.assertIn('global cooldown', context.exception.message)
        cooldowns.check(1, 'f', 30, NOW + datetime.timedelta(seconds=61))

    def test_expired_cooldowns_are_dropped(self):
        cooldowns = Cooldowns(global_seconds=60, max_parallel=3)
        cooldowns.check(1, 'about', 5, NOW)
        self.assertIn(1, cooldowns._commands)
        cooldowns.check_global(1, NOW + datetime.timedelta(seconds=6))
        self.assertNotIn(1, cooldowns._commands)
        cooldowns.check(2, 'user logout', 0, NOW)
        self.assertNotIn(2, cooldowns._commands)


class ChartTests(unittest.IsolatedAsyncioTestCase):
    def test_descriptors_build(self):
        history = [(NOW - datetime.timedelta(days=1), 10.0), (NOW, 12.0)]
        alliance = SimpleNamespace(name='Star', history=history, rank=3, ipo_required=True, min_share_value=150,
                                   contribution={'daily': 1, 'total': 2, 'season': None},
                                   members=[make_member('Pilot')])
        airline = SimpleNamespace(name='Air', has_ipo=True, share_growth=history, fleet_size=10, routes=8, level=5,
                                  achievements=20, reputation={'pax': 80, 'cargo': 70},
                                  planes=[{'name': 'A380-800', 'amount': 2}])
        member = make_member('Pilot')
        member.history = history
        for charts, entity in ((ALLIANCE_CHARTS, alliance), (AIRLINE_CHARTS, airline), (MEMBER_CHARTS, member)):
            for descriptor in charts:
                config = descriptor.build([entity])
                self.assertIn(config['type'], ('line', 'bar', 'scatter', 'radar', 'bubble'))
                self.assertTrue(config['data']['datasets'])

    async def test_short_url(self):
        session = MagicMock()
        session.post = MagicMock(return_value=FakeResponse({'success': True, 'url': 'https://quickchart.io/x'}))
        url = await ChartService(session).short_url({'type': 'line'})
        self.assertEqual(url, 'https://quickchart.io/x')
        self.assertEqual(session.post.call_args.kwargs['json']['chart'], {'type': 'line'})


class LookupTests(unittest.IsolatedAsyncioTestCase):
    def test_qr_parameters(self):
        params = Lookups.qr_parameters('https://www.airline4.net', 'airline', dark='#FF0000', ec_level='Q')
        self.assertEqual(params['dark'], 'ff0000')
        self.assertEqual(params['ecLevel'], 'Q')
        self.assertEqual(params['format'], 'png')

    def test_qr_errors(self):
        cases = [
            ({'text': 'https://www.airline4.net', 'name': 'my-code'},
             'Invalid file name. The QR-code file name can only contain letters!'),
            ({'text': 'not a url', 'name': 'code'}, 'That is not a valid URL...'),
            ({'text': 'https://www.airline4.net', 'name': 'code', 'dark': 'red'}, 'That is not a valid QR-code colour...'),
            ({'text': 'https://www.airline4.net', 'name': 'code', 'light': 'zzz'},
             'That is not a valid background colour...'),
        ]
        for kwargs, message in cases:
            with self.assertRaises(ClientError) as context:
                Lookups.qr_parameters(**kwargs)
            self.assertEqual(context.exception.message, message)

    def test_link_terms(self):
        self.assertIn('[plane](https://www.urbandictionary.com/define.php?term=plane)', link_terms('a [plane] flies'))

    async def test_no_definition(self):
        session = MagicMock()
        session.get = MagicMock(return_value=FakeResponse({'list': []}))
        with self.assertRaises(ClientError) as context:
            await Lookups(session).urban_definition('zzzz')
        self.assertEqual(context.exception.message, 'No results found for **zzzz**...')

    async def test_qr_code(self):
        session = MagicMock()
        session.get = MagicMock(return_value=FakeResponse(content=b'PNG'))
        filename, image = await Lookups(session).qr_code('https://www.airline4.net', 'airline')
        self.assertEqual((filename, image), ('airline.png', b'PNG'))


class CommandRegistryTests(unittest.TestCase):
    def test_find_nested_command(self):
        command = find_command(['alliance', 'members', 'sort'])
        self.assertEqual(command['function'], 'alliance_members_sort')
        self.assertEqual(command['cooldown'], 20)
        self.assertEqual(command['path'], 'alliance members sort')

    def test_find_context_command(self):
        self.assertEqual(find_command(['Airline'], 2)['function'], 'airline_context')
        self.assertIsNone(find_command(['Airline'], 1))
        menus = {
            'Alliance': ('alliance_context', 10),
            'Member': ('member_context', 10),
            'Compare Airline': ('compare_airline_context', 20),
            'Compare Member': ('compare_member_context', 20),
        }
        for name, (function, cooldown) in menus.items():
            command = find_command([name], CommandType.USER.value)
            self.assertEqual((command['function'], command['cooldown']), (function, cooldown))
        self.assertEqual(find_command(['Urban'], CommandType.MESSAGE.value)['cooldown'], 5)
        self.assertIsNone(find_command(['Urban'], CommandType.USER.value))

    def test_unknown_commands(self):
        self.assertIsNone(find_command(['alliance']))
        self.assertIsNone(find_command(['helicopter']))

    def test_find_component(self):
        component, groups = find_component('airline:123')
        self.assertEqual(component['function'], 'airline_component')
        self.assertEqual(groups, {'airline_id': '123'})
        self.assertEqual(find_component('chart'), (None, None))

    def test_command_changed(self):
        for command in COMMAND_REGISTRY:
            self.assertFalse(command_changed(command_payload(command)))
        payload = command_payload(COMMAND_REGISTRY[0])
        payload['description'] = 'Something else'
        self.assertTrue(command_changed(payload))

    def test_parse_options(self):
        data = {'name': 'alliance', 'type': 1, 'options': [{'name': 'members', 'type': 2, 'options': [
            {'name': 'sort', 'type': 1, 'options': [
                {'name': 'alliance', 'type': 3, 'value': 'Star'},
                {'name': 'sort', 'type': 3, 'value': 'flights'},
            ]},
        ]}]}
        path, options = BaseBot.parse_options(data)
        self.assertEqual(path, ['alliance', 'members', 'sort'])
        self.assertEqual(options, {'alliance': 'Star', 'sort': 'flights'})


class ViewTests(unittest.TestCase):
    def setUp(self):
        self.views = Views()

    def test_sorted_list(self):
        e = self.views.render_sorted_list('Members', [['a', 'b'], ['c']], 'Requests remaining: 5')
        self.assertEqual([f.value for f in e.fields], ['a\nb', 'c'])
        self.assertEqual(e.footer.text, 'Requests remaining: 5')

    def test_sorted_list_fields_fit(self):
        members = [make_member(f'Air{i:02d}xxxxxx') for i in range(40)]
        groups = reflow(SortState('flights').format_rows(members), 1000)
        e = self.views.render_sorted_list('Members', groups)
        self.assertEqual(len(e.fields), 2)
        self.assertTrue(all(len(field.value) <= 1024 for field in e.fields))
        BaseBot.embed_check_limits(e)

    def test_oversized_field(self):
        with self.assertRaises(EmbedLimitsExceed):
            self.views.render_sorted_list('Members', [['x' * 1100]])

    def test_about(self):
        e = self.views.render_about(description='', version='1.0.0', uptime='2 days', availability='99.000%',
                                    guilds=1200, alliances=15)
        self.assertEqual(e.title, 'About AM4 Bot')
        self.assertIn('**Version:** 1.0.0', e.fields[0].value)
        self.assertIn('1,200', e.fields[1].value)


class UserTests(DatabaseMixin, unittest.TestCase):
    def test_login_conflict(self):
        User.ensure(1, 'first')
        User.ensure(2, 'second')
        User.login(1, 100)
        with self.assertRaises(ClientError):
            User.login(2, 100)
        User.login(1, 100)
        self.assertEqual(User.get(1)['airline_id'], 100)
        User.logout(1)
        self.assertIsNone(User.get(1)['airline_id'])
        with self.assertRaises(ClientError):
            User.logout(1)

    def test_usage(self):
        User.ensure(1, 'first')
        User.record_usage(1, 'about')
        User.record_usage(1, 'about')
        User.record_usage(1, 'urban')
        self.assertEqual(User.usage(1), {'about': 2, 'urban': 1})

    def test_mute(self):
        User.ensure(1, 'first')
        User.mute(1, NOW + datetime.timedelta(hours=1))
        self.assertTrue(User.is_muted(User.get(1), NOW))
        self.assertFalse(User.is_muted(User.get(1), NOW + datetime.timedelta(hours=2)))


class ServerSettingsTests(DatabaseMixin, unittest.TestCase):
    def test_channel_lists(self):
        settings = ServerSettings()
        self.assertFalse(settings.is_ephemeral(10, 100))
        settings.add(10, 100, 'blacklist')
        self.assertTrue(settings.is_ephemeral(10, 100))
        self.assertFalse(settings.is_ephemeral(10, 101))
        settings.add(10, 102, 'whitelist')
        self.assertTrue(settings.is_ephemeral(10, 101))
        self.assertFalse(settings.is_ephemeral(10, 102))
        self.assertFalse(settings.is_ephemeral(None, 101))

        reloaded = ServerSettings()
        self.assertEqual(reloaded.get_channels(10, 'whitelist'), [102])
        reloaded.remove(10, 102)
        self.assertFalse(reloaded.is_ephemeral(10, 101))

    def test_invalid_list(self):
        with self.assertRaises(ValueError):
            ServerSettings().add(10, 100, 'greylist')


class AllianceHistoryTests(DatabaseMixin, unittest.TestCase):
    def test_track(self):
        first = AllianceHistory.track('Star')
        self.assertEqual(AllianceHistory.track('Star')['id'], first['id'])
        AllianceHistory.archive(first['id'])
        self.assertEqual(AllianceHistory.tracked(), [])

    def test_member_stats(self):
        alliance_id = AllianceHistory.track('Star')['id']
        day_1 = datetime.datetime(2024, 3, 1)
        day_2 = datetime.datetime(2024, 3, 2)
        self.assertTrue(AllianceHistory.record_member(alliance_id, 'Pilot', day_1, 10, 100, 5.0, False, day_1))
        self.assertFalse(AllianceHistory.record_member(alliance_id, 'Pilot', day_1, 12, 150, 5.5, True, day_2))
        stats = AllianceHistory.member_stats(alliance_id)
        self.assertEqual(stats, {'Pilot': {'this_week': 50, 'days_offline': 1}})
        member, history = AllianceHistory.member_history('Pilot')
        self.assertEqual(member['flights'], 12)
        self.assertEqual(history['share_value'], [(day_1, 5.0), (day_2, 5.5)])

    def test_values(self):
        alliance_id = AllianceHistory.track('Star')['id']
        AllianceHistory.add_value(alliance_id, 10.0, datetime.datetime(2024, 3, 2))
        AllianceHistory.add_value(alliance_id, 9.0, datetime.datetime(2024, 3, 1))
        self.assertEqual([v for _, v in AllianceHistory.values(alliance_id)], [9.0, 10.0])


class AllianceTrackerTests(DatabaseMixin, unittest.IsolatedAsyncioTestCase):
    async def test_update(self):
        AllianceHistory.track('Star Alliance')
        AllianceHistory.track('Gone')
        tracker = AllianceTracker(MagicMock(), access_token='secret')

        async def fetch_alliance(name):
            if name == 'Gone':
                return Alliance({'status': {'request': 'failed', 'description': 'Alliance not found'}})
            return Alliance(AM4APITests.ALLIANCE)

        tracker.rest = MagicMock(requests_remaining=10)
        tracker.rest.fetch_alliance = AsyncMock(side_effect=fetch_alliance)
        with self.assertLogs('base_bot', level='INFO'):
            stats = await tracker.update(NOW)
        self.assertEqual(stats, {'alliances': 1, 'members': 0, 'new_members': 2, 'archived': 1})
        self.assertEqual([a['name'] for a in AllianceHistory.tracked()], ['Star Alliance'])
        alliance_id = AllianceHistory.get('Star Alliance')['id']
        self.assertEqual(AllianceHistory.values(alliance_id), [(NOW, 120.5)])


class QuizTests(DatabaseMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        super().setUp()
        Quiz.add_game('g1', 'Plane Quiz', 'plane', 'tower', 10, 'Which plane is this?')
        Quiz.add_question('plane', 'easy', ['A380', 'Airbus A380'], 'Largest passenger plane?')
        Quiz.add_question('plane', 'easy', ['B747'], 'Queen of the skies?')
        Quiz.add_question('plane', 'hard', ['An-225'], 'Heaviest plane?')

    def test_pool(self):
        self.assertEqual(Quiz.pool_size('plane', 'normal'), 3)
        self.assertEqual(Quiz.pool_size('plane', 'easy'), 2)
        questions = Quiz.sample_questions('plane', 'easy', 5)
        self.assertEqual(len(questions), 2)
        self.assertIsInstance(questions[0]['answers'], list)

    def test_answers(self):
        question = {'answers': ['A380', 'Airbus A380']}
        self.assertTrue(Quiz.is_correct(question, ' airbus a380 '))
        self.assertFalse(Quiz.is_correct(question, 'B747'))

    def test_points(self):
        Quiz.add_points(1, 10)
        row, score = Quiz.add_points(1, 5, tournament=True)
        self.assertEqual(row['points'], 15)
        self.assertTrue(0 <= score <= 5)
        User.ensure(1, 'pilot')
        rows, total = Quiz.leaderboard('points')
        self.assertEqual(total, 1)
        self.assertEqual((rows[0]['name'], rows[0]['value']), ('pilot', 15))
        with self.assertRaises(KeyError):
            Quiz.leaderboard('altitude')

    def test_prepare(self):
        manager = QuizManager(MagicMock(), MagicMock(), KeyedLock())
        with self.assertRaises(ClientError):
            manager.prepare('missing', 'normal', 20, 5)
        game = manager.prepare('g1', 'hard', 20, 5)
        self.assertEqual(game.rounds, 1)
        self.assertEqual(game.reward, 20)

    async def test_one_game_per_guild(self):
        lock = KeyedLock()
        manager = QuizManager(MagicMock(), MagicMock(), lock)
        interaction = make_interaction()
        interaction.guild_id = 42
        lock.acquire(42)
        with self.assertRaises(ClientError) as context:
            await manager.start(interaction, MagicMock())
        self.assertEqual(context.exception.message, GAME_RUNNING)

    async def test_correct_answer(self):
        question = Quiz.sample_questions('plane', 'hard', 1)[0]
        answer = MagicMock()
        answer.author.id = 5
        answer.reply = AsyncMock()
        client = MagicMock()
        client.wait_for = AsyncMock(return_value=answer)
        thread = MagicMock()
        thread.send = AsyncMock()
        game = QuizGame(client, MagicMock(), Quiz.get_game('g1'), 'hard', 20, 5, [question])
        winner = await game.ask(thread, 0, question)
        self.assertIs(winner, answer.author)
        self.assertEqual(Quiz.get_score(5)['points'], 20)

    async def test_nobody_answers(self):
        question = Quiz.sample_questions('plane', 'hard', 1)[0]
        question_message = MagicMock()
        question_message.reply = AsyncMock()
        client = MagicMock()
        client.wait_for = AsyncMock(side_effect=asyncio.TimeoutError)
        thread = MagicMock()
        thread.send = AsyncMock(return_value=question_message)
        game = QuizGame(client, MagicMock(), Quiz.get_game('g1'), 'hard', 20, 5, [question])
        self.assertIsNone(await game.ask(thread, 0, question))
        self.assertEqual(question_message.reply.call_args.args[0], 'Looks like nobody got the right answer this time...')


class DispatcherTests(DatabaseMixin, unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.bot = AM4Bot(intents=discord.Intents.default())
        self.bot.server_settings = ServerSettings()
        self.bot.about = AsyncMock()

    async def test_usage_is_recorded(self):
        await self.bot.on_slash_command(find_command(['about']), {}, make_interaction())
        self.bot.about.assert_awaited_once()
        self.assertEqual(self.bot.about.call_args.kwargs['ephemeral'], False)
        self.assertEqual(User.usage(1), {'about': 1})

    async def test_command_cooldown(self):
        await self.bot.on_slash_command(find_command(['about']), {}, make_interaction())
        interaction = make_interaction()
        await self.bot.on_slash_command(find_command(['about']), {}, interaction)
        self.assertEqual(self.bot.about.await_count, 1)
        message = interaction.response.send_message.call_args.args[0]
        self.assertTrue(message.startswith('You currently have a cooldown for this command.'))
        self.assertTrue(interaction.response.send_message.call_args.kwargs['ephemeral'])

    async def test_admins_skip_cooldowns(self):
        User.ensure(1, 'pilot')
        db = DB()
        db.cursor.execute('UPDATE User SET admin_level = 1 WHERE id = 1;')
        db.commit()
        db.close()
        for _ in range(2):
            await self.bot.on_slash_command(find_command(['about']), {}, make_interaction())
        self.assertEqual(self.bot.about.await_count, 2)

    async def test_suspended_user(self):
        User.ensure(1, 'pilot')
        User.mute(1, datetime.datetime.utcnow() + datetime.timedelta(hours=1))
        interaction = make_interaction()
        await self.bot.on_slash_command(find_command(['about']), {}, interaction)
        self.bot.about.assert_not_awaited()
        self.assertIn('suspended', interaction.response.send_message.call_args.args[0])

    async def test_api_error_is_surfaced(self):
        self.bot.rest = MagicMock()
        self.bot.rest.fetch_airline = AsyncMock(return_value=Airline(
            {'status': {'request': 'failed', 'description': 'Airline not found'}}))
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('airline search', interaction, self.bot.airline_search,
                               account={'airline_id': None}, ephemeral=False, name='Nobody')
        interaction.edit_original_response.assert_awaited_once_with(content='Airline not found')

    async def test_login_required(self):
        interaction = make_interaction()
        await self.bot.guarded('Compare Alliance', interaction, self.bot.compare_alliance_context,
                               account={'airline_id': None}, ephemeral=False, target_id=2)
        message = interaction.response.send_message.call_args.args[0]
        self.assertTrue(message.startswith('You need to save your airline'))

    async def test_self_compare(self):
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Compare Alliance', interaction, self.bot.compare_alliance_context,
                               account={'airline_id': 5}, ephemeral=False, target_id=1)
        interaction.edit_original_response.assert_awaited_once_with(
            content='You cannot compare yourself with yourself...')

    def login(self, user_id, airline_id):
        User.ensure(user_id, f'user{user_id}')
        User.login(user_id, airline_id)

    async def test_message_context_target(self):
        self.bot.urban_context = AsyncMock()
        interaction = make_interaction(data={'name': 'Urban', 'type': 3, 'target_id': '55',
                                             'resolved': {'messages': {'55': {'id': '55', 'content': 'jet lag'}}}})
        await self.bot.on_slash_command(find_command(['Urban'], CommandType.MESSAGE.value), {}, interaction)
        kwargs = self.bot.urban_context.call_args.kwargs
        self.assertEqual((kwargs['target_id'], kwargs['content']), (55, 'jet lag'))

    async def test_urban_context_without_text(self):
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Urban', interaction, self.bot.urban_context,
                               account={'airline_id': None}, ephemeral=False, target_id=55, content='  ')
        interaction.edit_original_response.assert_awaited_once_with(
            content='This message does not have any text content...')

    async def test_urban_context_links_message(self):
        self.bot.lookups = MagicMock()
        self.bot.lookups.urban_definition = AsyncMock(return_value={
            'word': 'jet lag', 'permalink': 'https://www.urbandictionary.com/jetlag', 'author': 'pilot',
            'definition': 'Tired after flying', 'example': '', 'thumbs_up': 3, 'thumbs_down': 1})
        interaction = make_interaction(deferred=True)
        interaction.channel_id = 7
        await self.bot.guarded('Urban', interaction, self.bot.urban_context,
                               account={'airline_id': None}, ephemeral=False, target_id=55, content=' jet lag ')
        self.bot.lookups.urban_definition.assert_awaited_once_with('jet lag')
        kwargs = interaction.edit_original_response.call_args.kwargs
        self.assertEqual(kwargs['content'], 'Searched via [this message](https://discord.com/channels/@me/7/55)')
        self.assertEqual(kwargs['embed'].title, 'jet lag')

    async def test_member_context_requires_target_login(self):
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Member', interaction, self.bot.member_context,
                               account={'airline_id': None}, ephemeral=False, target_id=2)
        interaction.edit_original_response.assert_awaited_once_with(content='<@2> has not logged in...')

    async def test_alliance_context_without_alliance(self):
        self.login(2, 22)
        self.bot.rest = MagicMock()
        self.bot.rest.fetch_airline = AsyncMock(return_value=make_airline('Air Two'))
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Alliance', interaction, self.bot.alliance_context,
                               account={'airline_id': None}, ephemeral=False, target_id=2)
        self.bot.rest.fetch_airline.assert_awaited_once_with(22)
        interaction.edit_original_response.assert_awaited_once_with(
            content='<@2>: This airline does not seem to be in an alliance...')

    async def test_compare_airline_context(self):
        self.login(2, 22)
        airlines = {11: make_airline('Air One', requests_remaining=12), 22: make_airline('Air Two')}
        self.bot.rest = MagicMock()
        self.bot.rest.fetch_airline = AsyncMock(side_effect=lambda airline_id: airlines[airline_id])
        self.bot.charts = MagicMock()
        self.bot.charts.short_url = AsyncMock(return_value='https://quickchart.io/chart/1')
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Compare Airline', interaction, self.bot.compare_airline_context,
                               account={'airline_id': 11}, ephemeral=False, target_id=2)
        kwargs = interaction.edit_original_response.call_args.kwargs
        session = kwargs['view']
        self.assertIsInstance(session, ChartCarouselSession)
        self.assertEqual([a.name for a in session.entities], ['Air One', 'Air Two'])
        self.assertEqual(kwargs['embed'].footer.text, 'Requests remaining: 10')
        session.stop()

    async def test_compare_airline_context_self(self):
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Compare Airline', interaction, self.bot.compare_airline_context,
                               account={'airline_id': 11}, ephemeral=False, target_id=1)
        interaction.edit_original_response.assert_awaited_once_with(
            content='You cannot compare yourself with yourself...')

    async def test_compare_member_context(self):
        self.login(2, 22)
        airlines = {11: make_airline('Pilot', 'Star Alliance'), 22: make_airline('Navigator', 'Star Alliance')}
        self.bot.rest = MagicMock()
        self.bot.rest.fetch_airline = AsyncMock(side_effect=lambda airline_id: airlines[airline_id])
        self.bot.rest.fetch_alliance = AsyncMock(return_value=Alliance(AM4APITests.ALLIANCE))
        self.bot.charts = MagicMock()
        self.bot.charts.short_url = AsyncMock(return_value='https://quickchart.io/chart/1')
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Compare Member', interaction, self.bot.compare_member_context,
                               account={'airline_id': 11}, ephemeral=False, target_id=2)
        session = interaction.edit_original_response.call_args.kwargs['view']
        self.assertIsInstance(session, ChartCarouselSession)
        self.assertEqual([m.name for m in session.entities], ['Pilot', 'Navigator'])
        session.stop()

    async def test_compare_member_context_outside_alliance(self):
        self.login(2, 22)
        airlines = {11: make_airline('Pilot', 'Star Alliance'), 22: make_airline('Loner')}
        self.bot.rest = MagicMock()
        self.bot.rest.fetch_airline = AsyncMock(side_effect=lambda airline_id: airlines[airline_id])
        self.bot.rest.fetch_alliance = AsyncMock(return_value=Alliance(AM4APITests.ALLIANCE))
        interaction = make_interaction(deferred=True)
        await self.bot.guarded('Compare Member', interaction, self.bot.compare_member_context,
                               account={'airline_id': 11}, ephemeral=False, target_id=2)
        interaction.edit_original_response.assert_awaited_once_with(
            content='<@2>: This airline does not seem to be in an alliance...')


if __name__ == '__main__':
    unittest.main()
