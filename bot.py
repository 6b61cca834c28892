#!/usr/bin/env python3
import asyncio
import datetime
import functools
import io
import os

import aiohttp
import discord
import humanize

import bot_tasks
from am4_api import AM4RestClient
from base_bot import BaseBot, ClientError, log, respond
from charts import AIRLINE_CHARTS, ALLIANCE_CHARTS, MEMBER_CHARTS, ChartService, airline_share_value, \
    alliance_growth, member_contribution_history
from command_registry import CommandType, command_changed, command_payload, COMMAND_REGISTRY, add_slash_command, \
    find_command, find_component, get_all_commands, remove_slash_command
from configurations import CONFIG
from discord_wrappers import admin_required, guild_required, login_required
from locks import Cooldowns, KeyedLock
from lookups import Lookups
from models import DB
from models.alliance_history import AllianceHistory
from models.quiz import MODES, Quiz
from models.server_settings import ServerSettings
from models.user import User
from quiz import QuizManager
from sessions import ChartCarouselSession, ConfirmSession, SortedListSession
from sorting import SortState
from util import debug, pluralize_author
from views import Views

TOKEN = os.getenv('DISCORD_TOKEN')

NOT_LOGGED_IN = 'You need to save your airline via `/user login` to be able to use this command!'
NO_ALLIANCE = 'This airline does not seem to be in an alliance...'


class AM4Bot(BaseBot):
    BOT_NAME = 'AM4 Bot'
    VERSION = '2.4.0'
    NEEDED_PERMISSIONS = [
        'read_messages',
        'send_messages',
        'embed_links',
        'attach_files',
        'read_message_history',
        'create_public_threads',
        'send_messages_in_threads',
        'manage_threads',
    ]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        log.debug(f'--------------------------- Starting {self.BOT_NAME} v{self.VERSION} --------------------------')
        self.views = Views()
        self.cooldowns = Cooldowns()
        self.quiz_lock = KeyedLock()
        self.quiz = QuizManager(self, self.views, self.quiz_lock)
        self.server_settings = None
        self.session = None
        self.rest = None
        self.charts = None
        self.lookups = None

    async def on_ready(self):
        if not self.bot_connect:
            self.bot_connect = datetime.datetime.now()
            log.debug(f'Connected at {self.bot_connect}.')
        else:
            await self.on_resumed()
        self.invite_url = discord.utils.oauth_url(client_id=self.user.id, permissions=self.permissions)
        game = discord.Game('Airline Manager 4')
        await self.change_presence(status=discord.Status.online, activity=game)
        log.info(f'Logged in as {self.user.name}')
        log.info(f'Active in {len(self.guilds)} guilds.')
        await self.register_slash_commands()

    def get_command(self, path, command_type):
        return find_command(path, command_type)

    async def check_account(self, interaction):
        account = User.ensure(interaction.user.id, interaction.user.name)
        if account['mute']:
            if User.is_muted(account):
                until = discord.utils.format_dt(account['mute'].replace(tzinfo=datetime.timezone.utc), 'F')
                await respond(interaction, f'You have been suspended from using commands until {until}!',
                              ephemeral=True)
                return None
            User.clear_mute(interaction.user.id)
        return account

    def is_ephemeral(self, interaction):
        channel = interaction.channel
        channel_id = interaction.channel_id
        if isinstance(channel, discord.Thread):
            channel_id = channel.parent_id
        return self.server_settings.is_ephemeral(interaction.guild_id, channel_id)

    async def on_slash_command(self, command, options, interaction):
        debug(interaction, f'/{command["path"]} {options}')
        account = await self.check_account(interaction)
        if account is None:
            return
        if not account['admin_level']:
            try:
                self.cooldowns.check(interaction.user.id, command['path'], command['cooldown'])
            except ClientError as e:
                await e.send(interaction, ephemeral=True)
                return
        if command.get('type') in (CommandType.USER, CommandType.MESSAGE):
            options['target_id'] = int(interaction.data['target_id'])
        if command.get('type') == CommandType.MESSAGE:
            message = interaction.data['resolved']['messages'][str(options['target_id'])]
            options['content'] = message.get('content', '')

        function = getattr(self, command['function'])
        ephemeral = self.is_ephemeral(interaction)

        async def run(i):
            await function(i, account=account, ephemeral=ephemeral, **options)
            User.record_usage(i.user.id, command['path'])

        await self.guarded(command['path'], interaction, run)

    async def on_component(self, interaction):
        component, groups = find_component(interaction.data.get('custom_id', ''))
        if component is None:
            return
        debug(interaction, f'[{interaction.data["custom_id"]}]')
        account = await self.check_account(interaction)
        if account is None:
            return
        if not account['admin_level']:
            try:
                self.cooldowns.check_global(interaction.user.id)
            except ClientError as e:
                await e.send(interaction, ephemeral=True)
                return
            if component.get('cooldown'):
                self.cooldowns.set_global(interaction.user.id, component['cooldown'])
        function = getattr(self, component['function'])
        await self.guarded(component['function'], interaction, function, account=account, **groups)

    async def resolve_user(self, user_id):
        user_id = int(user_id)
        return self.get_user(user_id) or await self.fetch_user(user_id)

    async def fetch_own_airline(self, account, name=None, airline_id=None):
        if name:
            return await self.rest.fetch_airline(name.strip())
        if airline_id:
            return await self.rest.fetch_airline(int(airline_id))
        if account['airline_id'] is None:
            raise ClientError(NOT_LOGGED_IN)
        return await self.rest.fetch_airline(account['airline_id'])

    async def fetch_all(self, fetch, names):
        names = list(dict.fromkeys(n.strip() for n in names if n))
        results = await asyncio.gather(*[fetch(name) for name in names])
        for name, result in zip(names, results):
            if not result.status.success:
                raise ClientError(f'**{name}:** {result.status.error}')
        return results

    @staticmethod
    def requests_footer(*results):
        remaining = [r.status.requests_remaining for r in results if r.status.requests_remaining is not None]
        if remaining:
            return f'Requests remaining: {min(remaining):,}'
        return None

    @staticmethod
    def airline_buttons(airline):
        view = discord.ui.View(timeout=None)
        if airline.id:
            view.add_item(discord.ui.Button(label='Fleet & awards', custom_id=f'airline:{airline.id}',
                                            style=discord.ButtonStyle.primary))
        return view

    async def send_airline(self, interaction, airline):
        airline.raise_for_status()
        chart_url = None
        if airline.has_ipo and airline.share_growth:
            chart_url = await self.charts.short_url(airline_share_value([airline]))
        e = self.views.render_airline(airline, chart_url)
        view = self.airline_buttons(airline)
        await interaction.edit_original_response(embed=e, view=view)
        view.stop()

    async def airline_search(self, interaction, account, ephemeral, **options):
        await interaction.response.defer(ephemeral=ephemeral)
        airline = await self.fetch_own_airline(account, options.get('name'), options.get('id'))
        await self.send_airline(interaction, airline)

    async def airline_compare(self, interaction, account, ephemeral, **options):
        await interaction.response.defer(ephemeral=ephemeral)
        names = [options.get(f'airline_{i}') for i in range(1, 6)]
        airlines = await self.fetch_all(self.rest.fetch_airline, names)
        session = ChartCarouselSession(interaction.user.id, AIRLINE_CHARTS, airlines, self.charts, self.views,
                                       footer=self.requests_footer(*airlines))
        await session.start(interaction)

    @staticmethod
    def saved_airline_id(user_id):
        row = User.get(user_id)
        if row is None or row['airline_id'] is None:
            raise ClientError(f'<@{user_id}> has not logged in...')
        return row['airline_id']

    @staticmethod
    async def on_behalf_of(user_id, coroutine):
        """Await ``coroutine``, prefixing the message of a failure with a mention of ``user_id``."""
        try:
            return await coroutine
        except ClientError as e:
            raise ClientError(f'<@{user_id}>: {e.message}')

    def compared_users(self, interaction, account, target_id):
        if interaction.user.id == target_id:
            raise ClientError('You cannot compare yourself with yourself...')
        return [(interaction.user.id, account['airline_id']), (target_id, self.saved_airline_id(target_id))]

    async def fetch_checked_airline(self, airline_id):
        return (await self.rest.fetch_airline(airline_id)).raise_for_status()

    async def airline_context(self, interaction, account, ephemeral, target_id, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        airline = await self.rest.fetch_airline(self.saved_airline_id(target_id))
        await self.send_airline(interaction, airline)

    @login_required
    async def compare_airline_context(self, interaction, account, ephemeral, target_id, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        users = self.compared_users(interaction, account, target_id)
        airlines = await asyncio.gather(*[self.on_behalf_of(user_id, self.fetch_checked_airline(airline_id))
                                          for user_id, airline_id in users])
        session = ChartCarouselSession(interaction.user.id, AIRLINE_CHARTS, airlines, self.charts, self.views,
                                       footer=self.requests_footer(*airlines))
        await session.start(interaction)

    async def airline_component(self, interaction, account, airline_id, **__):
        await interaction.response.defer(ephemeral=True, thinking=True)
        airline = await self.rest.fetch_airline(int(airline_id))
        airline.raise_for_status()
        await interaction.edit_original_response(embed=self.views.render_airline_details(airline))

    async def alliance_of(self, airline):
        airline.raise_for_status()
        if not airline.alliance_name:
            raise ClientError(NO_ALLIANCE)
        alliance = await self.rest.fetch_alliance(airline.alliance_name)
        return alliance.raise_for_status()

    @staticmethod
    def attach_history(alliances):
        for alliance in alliances:
            row = AllianceHistory.get(alliance.name)
            alliance.history = AllianceHistory.values(row['id']) if row else []
        return alliances

    async def alliance_search(self, interaction, account, ephemeral, name=None, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        if name:
            alliance = (await self.rest.fetch_alliance(name.strip())).raise_for_status()
        else:
            alliance = await self.alliance_of(await self.fetch_own_airline(account))
        row = AllianceHistory.track(alliance.name)
        alliance.history = AllianceHistory.values(row['id'])
        await self.send_alliance(interaction, alliance)

    async def send_alliance(self, interaction, alliance):
        chart_url = None
        if len(alliance.history) > 1:
            chart_url = await self.charts.short_url(alliance_growth([alliance]))
        await interaction.edit_original_response(embed=self.views.render_alliance(alliance, chart_url))

    async def alliance_context(self, interaction, account, ephemeral, target_id, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        airline = await self.rest.fetch_airline(self.saved_airline_id(target_id))
        alliance = await self.on_behalf_of(target_id, self.alliance_of(airline))
        self.attach_history([alliance])
        await self.send_alliance(interaction, alliance)

    async def alliance_compare(self, interaction, account, ephemeral, **options):
        await interaction.response.defer(ephemeral=ephemeral)
        names = [options.get(f'alliance_{i}') for i in range(1, 6)]
        alliances = self.attach_history(await self.fetch_all(self.rest.fetch_alliance, names))
        session = ChartCarouselSession(interaction.user.id, ALLIANCE_CHARTS, alliances, self.charts, self.views,
                                       footer=self.requests_footer(*alliances))
        await session.start(interaction)

    @login_required
    async def compare_alliance_context(self, interaction, account, ephemeral, target_id, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        users = self.compared_users(interaction, account, target_id)

        async def alliance_of_user(airline_id):
            return await self.alliance_of(await self.rest.fetch_airline(airline_id))

        alliances = await asyncio.gather(*[self.on_behalf_of(user_id, alliance_of_user(airline_id))
                                           for user_id, airline_id in users])
        self.attach_history(alliances)
        session = ChartCarouselSession(interaction.user.id, ALLIANCE_CHARTS, alliances, self.charts, self.views,
                                       footer=self.requests_footer(*alliances))
        await session.start(interaction)

    def enrich_members(self, alliance):
        row = AllianceHistory.get(alliance.name)
        stats = AllianceHistory.member_stats(row['id']) if row else {}
        for member in alliance.members:
            member_stats = stats.get(member.name, {})
            member.this_week = member_stats.get('this_week', 0)
            member.days_offline = member_stats.get('days_offline', 0)
        return alliance

    async def alliance_members_sort(self, interaction, account, ephemeral, alliance, sort, order='desc',
                                    amount=None, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        state = SortState(sort, order, amount)
        result = (await self.rest.fetch_alliance(alliance.strip())).raise_for_status()
        self.enrich_members(result)
        session = SortedListSession(interaction.user.id, result.members, state,
                                    title=f'{pluralize_author(result.name)} members', views=self.views,
                                    footer=self.requests_footer(result), timestamp=result.founded)
        await session.start(interaction)

    async def find_member(self, airline):
        alliance = await self.alliance_of(airline)
        member = alliance.get_member(airline.name)
        if member is None:
            raise ClientError(f'Could not find **{airline.name}** in {alliance.name}...')
        member_row, history = AllianceHistory.member_history(member.name)
        member.history = history['contribution']
        if member_row is not None:
            member.this_week = sum(value for _, value in history['contribution'])
            member.days_offline = history['offline'][-1][1] if history['offline'] else 0
        return member, alliance, member_row is not None

    async def alliance_members_search(self, interaction, account, ephemeral, **options):
        await interaction.response.defer(ephemeral=ephemeral)
        airline = await self.fetch_own_airline(account, options.get('name'), options.get('id'))
        await self.send_member(interaction, airline)

    async def send_member(self, interaction, airline):
        member, alliance, tracked = await self.find_member(airline)
        chart_url = None
        if len(member.history) > 1:
            chart_url = await self.charts.short_url(member_contribution_history([member]))
        e = self.views.render_member(member, alliance,
                                     this_week=member.this_week if tracked else None,
                                     days_offline=member.days_offline if tracked else None,
                                     chart_url=chart_url)
        await interaction.edit_original_response(embed=e)

    async def alliance_members_compare(self, interaction, account, ephemeral, **options):
        await interaction.response.defer(ephemeral=ephemeral)
        names = [options.get(f'member_{i}') for i in range(1, 6)]
        airlines = await self.fetch_all(self.rest.fetch_airline, names)
        members = []
        for airline in airlines:
            member, _, _ = await self.find_member(airline)
            members.append(member)
        session = ChartCarouselSession(interaction.user.id, MEMBER_CHARTS, members, self.charts, self.views,
                                       footer=self.requests_footer(*airlines))
        await session.start(interaction)

    async def member_context(self, interaction, account, ephemeral, target_id, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        airline = await self.rest.fetch_airline(self.saved_airline_id(target_id))
        await self.on_behalf_of(target_id, self.send_member(interaction, airline))

    @login_required
    async def compare_member_context(self, interaction, account, ephemeral, target_id, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        users = self.compared_users(interaction, account, target_id)

        async def member_of_user(airline_id):
            airline = await self.rest.fetch_airline(airline_id)
            member, _, _ = await self.find_member(airline)
            return airline, member

        results = await asyncio.gather(*[self.on_behalf_of(user_id, member_of_user(airline_id))
                                         for user_id, airline_id in users])
        airlines = [airline for airline, _ in results]
        members = [member for _, member in results]
        session = ChartCarouselSession(interaction.user.id, MEMBER_CHARTS, members, self.charts, self.views,
                                       footer=self.requests_footer(*airlines))
        await session.start(interaction)

    async def user_login(self, interaction, account, id, **__):
        await interaction.response.defer(ephemeral=True)
        airline = (await self.rest.fetch_airline(int(id))).raise_for_status()
        User.login(interaction.user.id, int(id))
        log.debug(f'{interaction.user} logged in as {airline.name} ({id}).')
        await interaction.edit_original_response(content=f'Your airline has been saved as **{airline.name}**!')

    async def user_logout(self, interaction, account, **__):
        User.logout(interaction.user.id)
        await interaction.response.send_message('Your airline has been removed from your account.', ephemeral=True)

    async def user_view(self, interaction, account, ephemeral, user=None, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        member = await self.resolve_user(user) if user else interaction.user
        row = User.get(member.id)
        if row is None:
            raise ClientError(f'{member.mention} does not have an account yet...')
        airline = None
        if row['airline_id'] is not None:
            airline = await self.rest.fetch_airline(row['airline_id'])
            if not airline.status.success:
                airline = None
        e = self.views.render_user(member, row, airline, User.usage(member.id))
        await interaction.edit_original_response(embed=e)

    async def urban(self, interaction, account, ephemeral, term, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        await self.send_urban(interaction, term.strip())

    async def urban_context(self, interaction, account, ephemeral, target_id, content='', **__):
        await interaction.response.defer(ephemeral=ephemeral)
        if not content.strip():
            raise ClientError('This message does not have any text content...')
        guild = interaction.guild_id or '@me'
        url = f'https://discord.com/channels/{guild}/{interaction.channel_id}/{target_id}'
        await self.send_urban(interaction, content.strip(), f'Searched via [this message]({url})')

    async def send_urban(self, interaction, term, content=None):
        definition = await self.lookups.urban_definition(term)
        view = discord.ui.View()
        view.add_item(discord.ui.Button(label=f'{definition.get("thumbs_up", 0):,}', emoji='👍', disabled=True,
                                        custom_id='thumbs_up'))
        view.add_item(discord.ui.Button(label=f'{definition.get("thumbs_down", 0):,}', emoji='👎', disabled=True,
                                        custom_id='thumbs_down'))
        await interaction.edit_original_response(content=content, embed=self.views.render_urban(definition), view=view)
        view.stop()

    async def generate_fact(self, interaction, account, ephemeral, **__):
        await interaction.response.defer(ephemeral=ephemeral)
        fact = await self.lookups.random_fact()
        await interaction.edit_original_response(content=fact)

    async def create_qr(self, interaction, account, ephemeral, text, name, **options):
        await interaction.response.defer(ephemeral=ephemeral)
        filename, image = await self.lookups.qr_code(text, name.strip(), file_format=options.get('format'),
                                                     dark=options.get('dark'), light=options.get('light'),
                                                     size=options.get('size'), margin=options.get('margin'),
                                                     ec_level=options.get('ec_level'))
        await interaction.edit_original_response(attachments=[discord.File(io.BytesIO(image), filename=filename)])

    @guild_required
    async def quiz_play(self, interaction, account, ephemeral, game, difficulty='normal', time=20, rounds=5, **__):
        if ephemeral:
            await interaction.response.send_message(
                'This channel is blacklisted from using commands! '
                'Quiz games can only be played in non-blacklisted channels...', ephemeral=True)
            return
        await interaction.response.defer()
        quiz_game = self.quiz.prepare(game, difficulty, time, rounds)
        pool_size = Quiz.pool_size(quiz_game.game['tag'], difficulty)
        e = self.views.render_quiz_game(quiz_game.game, difficulty, quiz_game.game['reward'] * MODES[difficulty],
                                        pool_size, time, quiz_game.rounds, interaction.user)
        on_start = functools.partial(self.quiz.start, game=quiz_game)
        session = ConfirmSession(interaction.user.id, on_start, e)
        await session.start(interaction)

    async def quiz_points(self, interaction, account, ephemeral, user=None, **__):
        user_id = int(user) if user else interaction.user.id
        score = Quiz.get_score(user_id)
        if score is None:
            raise ClientError(f'<@{user_id}>, does not have any points...')
        content = f'**Quiz points:** `{score["points"]:,g}`'
        if CONFIG.get('quiz_tournament'):
            content += f'\n**Monthly score:** `{score["score"] or 0:,g}`'
        await interaction.response.send_message(content, ephemeral=ephemeral)

    async def quiz_leaderboard(self, interaction, account, ephemeral, type, **__):
        if type == 'score' and not CONFIG.get('quiz_tournament'):
            raise ClientError('There are no ongoing tournaments...')
        rows, total = Quiz.leaderboard(type)
        await interaction.response.send_message(embed=self.views.render_leaderboard(rows, total, type),
                                                ephemeral=ephemeral)

    @guild_required
    @admin_required
    async def settings_channel(self, interaction, account, action, channel, **options):
        channel_id = int(channel)
        if action == 'remove':
            self.server_settings.remove(interaction.guild_id, channel_id)
            message = f'<#{channel_id}> has been removed from the channel lists.'
        else:
            list_name = options.get('list')
            if list_name is None:
                raise ClientError('Please choose the list to add the channel to...')
            self.server_settings.add(interaction.guild_id, channel_id, list_name)
            message = f'<#{channel_id}> has been added to the {list_name}.'
        await interaction.response.send_message(message, ephemeral=True)

    async def about(self, interaction, account, ephemeral, **__):
        bot_runtime = datetime.datetime.now() - self.bot_start
        availability = (bot_runtime - self.downtimes) / bot_runtime if bot_runtime else 1
        e = self.views.render_about(
            description=f'[Invite]({self.invite_url})' if self.invite_url else '',
            version=self.VERSION,
            uptime=humanize.naturaldelta(bot_runtime),
            availability=f'{availability:.3%}',
            guilds=len(self.guilds),
            alliances=len(AllianceHistory.tracked()),
        )
        await interaction.response.send_message(embed=e, ephemeral=ephemeral)

    async def register_slash_commands(self):
        guild_id = CONFIG.get('slash_command_guild_id')
        existing_commands = await get_all_commands(self.user.id, TOKEN, guild_id=guild_id)
        re_register_commands = []
        for command in existing_commands:
            if command_changed(command) or CONFIG.get('deregister_slash_commands'):
                log.debug(f'Deregistering slash command {command["name"]}...')
                re_register_commands.append(command['name'])
                await remove_slash_command(self.user.id, TOKEN, guild_id, command['id'])
        if not CONFIG.get('register_slash_commands'):
            return
        for command in COMMAND_REGISTRY:
            if command['name'] in [c['name'] for c in existing_commands] \
                    and command['name'] not in re_register_commands:
                continue
            log.debug(f'Registering slash command {command["name"]}...')
            await add_slash_command(self.user.id, TOKEN, guild_id, command_payload(command))

    task_update_alliances = bot_tasks.task_update_alliances

    async def setup_hook(self):
        DB.create_tables()
        self.server_settings = ServerSettings()
        if (questions := CONFIG.get('quiz_questions_file')) and os.path.exists(questions):
            log.debug(f'Imported {Quiz.import_file(questions)} quiz questions from {questions}.')
        self.session = aiohttp.ClientSession()
        self.rest = AM4RestClient(self.session)
        self.charts = ChartService(self.session)
        self.lookups = Lookups(self.session)
        self.task_update_alliances.start()

    async def close(self):
        if self.session:
            await self.session.close()
        await super().close()


if __name__ == '__main__':
    intents = discord.Intents.default()
    intents.guilds = True
    intents.messages = True
    intents.message_content = CONFIG.get('request_messages_content_intent', True)
    client = AM4Bot(intents=intents)

    if TOKEN is not None:
        client.run(TOKEN)
    else:
        log.error('FATAL ERROR: DISCORD_TOKEN env var was not specified.')
