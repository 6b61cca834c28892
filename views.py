import datetime

import discord
import humanize
from jinja2 import Environment, FileSystemLoader

from base_bot import BaseBot
from configurations import BASE_DIR, CONFIG
from util import money, natural_age, pluralize_author


def timestamp(moment, style='F'):
    if moment is None:
        return '-'
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return discord.utils.format_dt(moment, style)


class Views:
    WHITE = discord.Color.from_rgb(254, 254, 254)
    BLACK = discord.Color.from_rgb(0, 0, 0)
    RED = discord.Color.from_rgb(255, 0, 0)
    BLURPLE = discord.Color.blurple()
    ORANGE = discord.Color.orange()
    QUESTION = discord.Color(0x00AE86)

    def __init__(self):
        self.jinja_env = Environment(loader=FileSystemLoader(f'{BASE_DIR}/templates'))
        self.jinja_env.filters['money'] = money
        self.jinja_env.filters['number'] = humanize.intcomma
        self.jinja_env.filters['timestamp'] = timestamp
        self.jinja_env.filters['age'] = natural_age

    @staticmethod
    def footer(e, status=None, text=None):
        if status is not None and status.requests_remaining is not None:
            text = f'Requests remaining: {status.requests_remaining:,}'
        if text:
            e.set_footer(text=text, icon_url=CONFIG.get('am4_logo_url'))
        return e

    def render_embed(self, embed, template_name, **kwargs):
        template = self.jinja_env.get_template(template_name)
        content = template.render(**kwargs)

        for i, split in enumerate(content.split('<T>')):
            if i == 0:
                embed.description = split.strip() or None
            else:
                title_end = split.index('</T>')
                inline = split.startswith('inline')
                embed.add_field(
                    name=split[inline * len('inline'):title_end],
                    value=split[title_end + 4:].strip() or '\u200b',
                    inline=inline)
        BaseBot.embed_check_limits(embed)
        return embed

    def render_airline(self, airline, chart_url=None):
        e = discord.Embed(title=airline.name, color=self.BLURPLE)
        e.set_thumbnail(url=airline.display_logo_url)
        if airline.id:
            e.url = f'https://www.airline4.net/?gameType=app&uid={airline.id}'
        if chart_url:
            e.set_image(url=chart_url)
        self.footer(e, airline.status)
        awards = sorted(airline.awards, key=lambda a: a[1], reverse=True)[:5]
        return self.render_embed(e, 'airline.jinja', airline=airline, awards=awards)

    def render_airline_details(self, airline):
        e = discord.Embed(title=f'{pluralize_author(airline.name)} fleet and awards', color=self.BLURPLE)
        planes = sorted(airline.planes, key=lambda p: p['amount'], reverse=True)[:20]
        awards = sorted(airline.awards, key=lambda a: a[1], reverse=True)[:15]
        self.footer(e, airline.status)
        return self.render_embed(e, 'airline_details.jinja', planes=planes, awards=awards)

    def render_alliance(self, alliance, chart_url=None):
        e = discord.Embed(title=alliance.name, color=self.BLURPLE)
        if alliance.founded:
            e.timestamp = alliance.founded.replace(tzinfo=datetime.timezone.utc)
        if chart_url:
            e.set_image(url=chart_url)
        self.footer(e, alliance.status)
        recently_joined = sorted(alliance.members, key=lambda m: m.joined, reverse=True)[:5]
        return self.render_embed(e, 'alliance.jinja', alliance=alliance, recently_joined=recently_joined)

    def render_member(self, member, alliance, this_week=None, days_offline=None, chart_url=None):
        e = discord.Embed(title=member.name, color=self.BLURPLE)
        if chart_url:
            e.set_image(url=chart_url)
        self.footer(e, alliance.status)
        return self.render_embed(e, 'member.jinja', member=member, alliance=alliance, this_week=this_week,
                                 days_offline=days_offline)

    def render_chart(self, chart, url, footer=None):
        e = discord.Embed(title=chart.title, description=chart.description, color=self.BLURPLE)
        e.set_image(url=url)
        return self.footer(e, text=footer)

    def render_sorted_list(self, title, groups, footer=None, timestamp=None):
        e = discord.Embed(title=title, color=self.BLURPLE)
        if timestamp:
            e.timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
        for group in groups:
            e.add_field(name='\u200b', value='\n'.join(group), inline=True)
        self.footer(e, text=footer)
        BaseBot.embed_check_limits(e)
        return e

    def render_user(self, member, user, airline=None, usage=None):
        e = discord.Embed(title=pluralize_author(member.display_name) + ' account', color=self.BLURPLE)
        e.set_thumbnail(url=member.display_avatar.url)
        return self.render_embed(e, 'user.jinja', user=user, airline=airline, airline_id=user['airline_id'],
                                 usage=usage)

    def render_urban(self, definition):
        e = discord.Embed(title=definition['word'], url=definition['permalink'], color=self.BLURPLE)
        e.set_author(name=definition['author'])
        if definition.get('written_on'):
            e.timestamp = datetime.datetime.fromisoformat(definition['written_on'].replace('Z', '+00:00'))
        return self.render_embed(e, 'urban.jinja',
                                 definition=self.trim_text_to_length(definition['definition'], 4000),
                                 example=self.trim_text_to_length(definition.get('example', ''), 1000))

    def render_quiz_game(self, game, mode, reward, pool_size, time, rounds, user):
        e = discord.Embed(title=game['name'], color=self.ORANGE)
        e.set_author(name=user.display_name, icon_url=user.display_avatar.url)
        e.set_footer(text=f'Game ID: {game["id"]}')
        return self.render_embed(e, 'quiz_game.jinja', game=game, mode=mode, reward=reward, pool_size=pool_size,
                                 time=time, rounds=rounds)

    def render_quiz_question(self, game, question, index, rounds):
        e = discord.Embed(color=self.QUESTION)
        e.set_footer(text=f'Question ID: {question["id"]}')
        if question['type'] == 'image':
            e.title = f'{game["base_question"]} ({index + 1}/{rounds})'
            e.set_image(url='attachment://question.jpg')
        else:
            e.title = f'{question["question"]} ({index + 1}/{rounds})'
        return e

    def render_leaderboard(self, rows, total, column):
        title = 'Monthly Score' if column == 'score' else 'Quiz Points'
        e = discord.Embed(title=f'Leaderboard • {title}', color=self.ORANGE)
        e.set_footer(text=f'Total players: {total:,}')
        return self.render_embed(e, 'leaderboard.jinja', rows=rows)

    def render_about(self, **kwargs):
        e = discord.Embed(title='About AM4 Bot', color=self.BLURPLE)
        e.set_thumbnail(url=CONFIG.get('am4_logo_url'))
        return self.render_embed(e, 'about.jinja', invite=CONFIG.get('support_invite'), **kwargs)

    @staticmethod
    def trim_text_to_length(text, limit, break_character='\n', end='\n...'):
        if len(text) <= limit:
            return text
        trimmed = text[:limit - len(end)]
        if break_character in trimmed:
            trimmed = trimmed[:trimmed.rindex(break_character)]
        return trimmed + end
