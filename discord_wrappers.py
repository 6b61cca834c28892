import functools

import discord

from base_bot import respond


def guild_required(function):
    @functools.wraps(function)
    async def wrapper(self, interaction, **kwargs):
        if not interaction.guild:
            e = discord.Embed(title='Restricted Command', color=self.RED)
            e.add_field(name='Error', value='This command is not available in private messages.')
            await respond(interaction, embed=e, ephemeral=True)
            return
        await function(self, interaction, **kwargs)

    return wrapper


def admin_required(function):
    @functools.wraps(function)
    async def wrapper(self, interaction, **kwargs):
        if not self.is_guild_admin(interaction):
            e = discord.Embed(title='Administrative change', color=self.RED)
            e.add_field(name='Error', value='You need to be server owner or administrator to use this command.')
            await respond(interaction, embed=e, ephemeral=True)
            return
        await function(self, interaction, **kwargs)

    return wrapper


def login_required(function):
    """Refuse users without a saved airline. Needs the ``account`` row the dispatcher passes along."""

    @functools.wraps(function)
    async def wrapper(self, interaction, **kwargs):
        account = kwargs.get('account')
        if account is None or account['airline_id'] is None:
            await respond(interaction, 'You need to save your airline via `/user login` to be able to use this '
                                       'command!', ephemeral=True)
            return
        await function(self, interaction, **kwargs)

    return wrapper
