import asyncio
import dataclasses

import discord

from base_bot import BaseBot, ClientError, EmbedLimitsExceed, log, respond
from configurations import CONFIG
from sorting import MEMBER_SORT_FIELDS, ORDERS, SortState
from util import reflow

FIELD_BUDGET = 1000


class SelectionSession(discord.ui.View):
    """
    Controls attached to one reply, usable only by the user who invoked the command.

    Every accepted event computes a new state through ``update`` and re-renders the whole
    message in place. The session closes after ``timeout`` seconds without events or on an
    explicit terminal action, leaving its controls disabled.
    """

    def __init__(self, owner_id, state, timeout=None):
        super().__init__(timeout=timeout or CONFIG.get('session_idle_minutes', 10) * 60)
        self.owner_id = owner_id
        self.state = state
        self.closed = False
        self.close_reason = None
        self.interaction = None
        self._lock = asyncio.Lock()

    async def update(self, interaction, state):
        raise NotImplementedError

    async def render(self, state):
        raise NotImplementedError

    def sync_controls(self):
        pass

    async def interaction_check(self, interaction):
        # checked before the idle timer is refreshed
        return interaction.user.id == self.owner_id

    def open(self, interaction):
        self.interaction = interaction
        return self

    async def start(self, interaction):
        """Send the first rendering as the reply to ``interaction`` and bind the session to it."""
        payload = await self.render(self.state)
        self.sync_controls()
        await respond(interaction, view=self, **payload)
        return self.open(interaction)

    async def on_event(self, interaction):
        if self.closed or interaction.user.id != self.owner_id:
            return
        async with self._lock:
            if self.closed:
                return
            try:
                state = await self.update(interaction, self.state)
                payload = await self.render(state)
                self.state = state
                self.sync_controls()
                self.interaction = interaction
                await interaction.response.edit_message(**payload, view=self)
            except ClientError as e:
                await e.send(interaction, ephemeral=True)
            except EmbedLimitsExceed as e:
                await ClientError.send_embed_limits(interaction, type(self).__name__, e, ephemeral=True)
            except Exception as e:
                log.exception(f'Error in {type(self).__name__} of user {self.owner_id}: {e!r}')
                await ClientError.send_unknown_error(interaction)

    async def close(self, reason='explicit'):
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        self.stop()
        for item in self.children:
            item.disabled = True
        if self.interaction is None:
            return
        try:
            await self.interaction.edit_original_response(view=self)
        except discord.HTTPException as e:
            log.warning(f'Could not disable controls of {type(self).__name__} ({reason}): {e}')

    async def on_timeout(self):
        await self.close('idle')


class ChartCarouselSession(SelectionSession):
    def __init__(self, owner_id, charts, entities, chart_service, views, footer=None, timeout=None):
        super().__init__(owner_id, 0, timeout)
        self.charts = charts
        self.entities = entities
        self.chart_service = chart_service
        self.views = views
        self.footer = footer
        self._urls = {}
        self.select = discord.ui.Select(
            custom_id='chart',
            placeholder='Select a graph...',
            min_values=1,
            max_values=1,
            options=[
                discord.SelectOption(label=f'{chart.kind}: {chart.title}'[:100], value=str(i),
                                     description=chart.description[:100])
                for i, chart in enumerate(charts)
            ],
        )
        self.select.callback = self.on_event
        self.add_item(self.select)

    async def chart_url(self, index):
        if index not in self._urls:
            chart = self.charts[index]
            self._urls[index] = await self.chart_service.short_url(chart.build(self.entities))
        return self._urls[index]

    async def update(self, interaction, state):
        index = int(interaction.data['values'][0])
        if not 0 <= index < len(self.charts):
            raise ClientError('That chart does not exist...')
        return index

    async def render(self, state):
        url = await self.chart_url(state)
        return {'embed': self.views.render_chart(self.charts[state], url, self.footer)}

    def sync_controls(self):
        for option in self.select.options:
            option.default = option.value == str(self.state)


class SortedListSession(SelectionSession):
    def __init__(self, owner_id, rows, state, title, views, footer=None, timestamp=None, timeout=None):
        super().__init__(owner_id, state, timeout)
        self.rows = rows
        self.title = title
        self.views = views
        self.footer = footer
        self.timestamp = timestamp
        self.sort_select = discord.ui.Select(
            custom_id='sort',
            placeholder='Sorting by...',
            row=0,
            options=[discord.SelectOption(label=field.label, value=key) for key, field in MEMBER_SORT_FIELDS.items()],
        )
        self.order_select = discord.ui.Select(
            custom_id='order',
            placeholder='Order...',
            row=1,
            options=[discord.SelectOption(label=label, value=key) for key, label in ORDERS.items()],
        )
        self.sort_select.callback = self.on_event
        self.order_select.callback = self.on_event
        self.add_item(self.sort_select)
        self.add_item(self.order_select)

    async def update(self, interaction, state: SortState):
        value = interaction.data['values'][0]
        if interaction.data['custom_id'] == 'sort':
            return dataclasses.replace(state, field=value)
        return dataclasses.replace(state, order=value)

    async def render(self, state):
        groups = reflow(state.format_rows(self.rows), FIELD_BUDGET)
        return {'embed': self.views.render_sorted_list(self.title, groups, self.footer, self.timestamp)}

    def sync_controls(self):
        for option in self.sort_select.options:
            option.default = option.value == self.state.field
        for option in self.order_select.options:
            option.default = option.value == self.state.order


class ConfirmSession(SelectionSession):
    """Cancel and start buttons, closed by the first accepted click."""

    def __init__(self, owner_id, on_confirm, embed, timeout=None):
        super().__init__(owner_id, None, timeout or CONFIG.get('quiz_prompt_minutes', 5) * 60)
        self.on_confirm = on_confirm
        self.embed = embed
        self.cancel_button = discord.ui.Button(label='Cancel', custom_id='cancel', style=discord.ButtonStyle.danger)
        self.start_button = discord.ui.Button(label='Start game', custom_id='start',
                                              style=discord.ButtonStyle.success)
        self.cancel_button.callback = self.on_event
        self.start_button.callback = self.on_event
        self.add_item(self.cancel_button)
        self.add_item(self.start_button)

    async def update(self, interaction, state):
        return interaction.data['custom_id']

    async def render(self, state):
        return {'embed': self.embed}

    async def on_event(self, interaction):
        await super().on_event(interaction)
        if self.closed or self.state is None:
            return
        await self.close('explicit')
        if self.state == 'start':
            await BaseBot.guarded(type(self).__name__, interaction, self.on_confirm)
        else:
            await interaction.followup.send('Game cancelled...')
