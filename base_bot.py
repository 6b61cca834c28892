import datetime
import logging
import sys
import traceback

import discord
import requests

from configurations import CONFIG

IMMEDIATE_RECONNECT_TIME = datetime.timedelta(milliseconds=500)

LOGLEVEL = logging.DEBUG

formatter = logging.Formatter('%(asctime)-15s [%(levelname)s] %(message)s')
handler = logging.StreamHandler()
handler.setFormatter(formatter)
handler.setLevel(LOGLEVEL)
log = logging.getLogger(__name__)

log.setLevel(logging.DEBUG)
log.addHandler(handler)


class EmbedLimitsExceed(Exception):
    pass


async def respond(interaction, content=None, ephemeral=False, **kwargs):
    """
    Answer an interaction through whatever channel its acknowledgment state still allows:
    a fresh reply, the edit of a deferred reply, or a follow-up message.
    """
    response = interaction.response
    if not response.is_done():
        return await response.send_message(content, ephemeral=ephemeral, **kwargs)
    if response.type == discord.InteractionResponseType.deferred_channel_message:
        return await interaction.edit_original_response(content=content, **kwargs)
    return await interaction.followup.send(content, ephemeral=ephemeral, **kwargs)


class ClientError(Exception):
    """
    An expected failure whose message is meant for the invoking user, verbatim.
    """
    UNKNOWN_ERROR = 'An unknown error occurred. Please report this in {invite}.'

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message

    async def send(self, interaction, ephemeral=False):
        try:
            await respond(interaction, self.message, ephemeral=ephemeral)
        except discord.HTTPException as e:
            log.warning(f'Could not deliver error message "{self.message}": {e}')

    @classmethod
    async def send_unknown_error(cls, interaction):
        message = cls.UNKNOWN_ERROR.format(invite=CONFIG.get('support_invite'))
        try:
            await respond(interaction, message)
        except discord.HTTPException as e:
            log.warning(f'Could not deliver unknown error notice: {e}')

    @classmethod
    async def send_embed_limits(cls, interaction, name, error, ephemeral=False):
        log.warning(f'Could not post response of {name}, embed limits exceed: {error}.')
        await cls(f'Could not post response, embed limits exceed: {error}.').send(interaction, ephemeral=ephemeral)


class BaseBot(discord.Client):
    WHITE = discord.Color.from_rgb(254, 254, 254)
    BLACK = discord.Color.from_rgb(0, 0, 0)
    RED = discord.Color.from_rgb(255, 0, 0)
    NEEDED_PERMISSIONS = []

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)

        self.permissions = self.generate_permissions()
        self.invite_url = ''
        self.bot_disconnect = datetime.datetime.now()
        self.bot_start = datetime.datetime.now()
        self.bot_connect = None
        self.downtimes = datetime.timedelta(seconds=0)
        log.debug(f'__init__ reset uptime to {self.bot_start}.')

    async def on_disconnect(self):
        if self.bot_connect and self.bot_connect > self.bot_disconnect:
            self.bot_disconnect = datetime.datetime.now()
            log.debug(f'Disconnected at {self.bot_disconnect}.')

    async def on_resumed(self):
        if self.bot_connect and self.bot_disconnect > self.bot_connect:
            self.bot_connect = datetime.datetime.now()
            added_downtime = self.bot_connect - self.bot_disconnect
            if added_downtime > IMMEDIATE_RECONNECT_TIME:
                self.downtimes += added_downtime
            else:
                added_downtime = datetime.timedelta(seconds=0)
            log.debug(f'Reconnected at {self.bot_connect}, increased downtime by {added_downtime} to {self.downtimes}.')

    def generate_permissions(self):
        permissions = discord.Permissions.none()

        for perm_name in self.NEEDED_PERMISSIONS:
            setattr(permissions, perm_name, True)
        log.debug(f'Permissions required: {", ".join([p for p, v in permissions if v])}')
        return permissions

    @staticmethod
    def parse_options(data):
        path = [data['name']]
        options = data.get('options', [])
        nested_types = (discord.AppCommandOptionType.subcommand.value,
                        discord.AppCommandOptionType.subcommand_group.value)
        while options and options[0]['type'] in nested_types:
            path.append(options[0]['name'])
            options = options[0].get('options', [])
        return path, {o['name']: o['value'] for o in options}

    def get_command(self, path, command_type):
        return NotImplemented

    async def on_slash_command(self, command, options, interaction):
        return NotImplemented

    async def on_component(self, interaction):
        return NotImplemented

    async def on_interaction(self, interaction):
        if interaction.user.bot:
            return
        if interaction.type == discord.InteractionType.application_command:
            path, options = self.parse_options(interaction.data)
            command = self.get_command(path, interaction.data.get('type', 1))
            if command is None:
                log.warning(f'No handler registered for /{" ".join(path)}.')
                return
            await self.on_slash_command(command, options, interaction)
        elif interaction.type == discord.InteractionType.component:
            await self.on_component(interaction)

    @staticmethod
    async def guarded(name, interaction, function, *args, **kwargs):
        try:
            await function(interaction, *args, **kwargs)
        except ClientError as e:
            await e.send(interaction)
        except EmbedLimitsExceed as e:
            await ClientError.send_embed_limits(interaction, name, e)
        except Exception as e:
            log.exception(f'Error while executing {name}: {e!r}')
            await ClientError.send_unknown_error(interaction)

    async def on_guild_join(self, guild):
        log.debug(f'Joined guild {guild} (id {guild.id}) Now in {len(self.guilds)} guilds.')

    async def on_guild_remove(self, guild):
        log.debug(f'Guild {guild.name} (id {guild.id}) kicked me out. Now in {len(self.guilds)} guilds.')

    async def on_error(self, event, *args, **kwargs):
        if host := CONFIG.get('ntfy_host'):
            exception = sys.exc_info()
            data_lines = [
                f'# Bot:{self.user.display_name}',
                f'{exception[0].__name__}: {exception[1]}',
                '---',
                '```',
                ''.join(traceback.format_tb(exception[2])),
                '```',
            ]

            requests.post(host, data='\n'.join(data_lines), headers={
                'Title': f'Exception in {event}',
                'Priority': 'urgent',
                'Tags': 'rotating_light',
                'Markdown': 'yes',
            }, auth=(CONFIG.get('ntfy_user'), CONFIG.get('ntfy_pass')))
        await super().on_error(event, *args, **kwargs)

    @staticmethod
    def is_guild_admin(interaction):
        if interaction.guild is None:
            return True
        permissions = interaction.permissions
        is_owner = interaction.user.id == interaction.guild.owner_id
        return is_owner or permissions.administrator or permissions.manage_guild

    @staticmethod
    def embed_check_limits(embed):
        if embed.title and len(embed.title) > 256:
            raise EmbedLimitsExceed(f'Embed title too long: {len(embed.title)}')
        if embed.description and len(embed.description) > 4096:
            raise EmbedLimitsExceed(f'Embed description too long: {len(embed.description)}')
        if embed.fields and len(embed.fields) > 25:
            raise EmbedLimitsExceed(f'Number of embed fields: {len(embed.fields)}')
        for field in embed.fields:
            if len(field.name) > 256:
                raise EmbedLimitsExceed(f'Field name too long: {len(field.name)}')
            if len(field.value) > 1024:
                raise EmbedLimitsExceed(f'Field value too long: {len(field.value)}')
        if embed.footer.text and len(embed.footer.text) > 2048:
            raise EmbedLimitsExceed(f'Footer too long: {len(embed.footer.text)}')
        if embed.author.name and len(embed.author.name) > 256:
            raise EmbedLimitsExceed(f'Author name too long: {len(embed.author.name)}')
        if len(embed) > 6000:
            raise EmbedLimitsExceed(f'Total embed too big: {len(embed)}')
