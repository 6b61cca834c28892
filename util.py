import datetime
import math

import discord
import humanize

from base_bot import log

ABBREVIATIONS = ['', 'k', 'm', 'b', 't']


def chunks(iterable, chunk_size):
    for i in range(0, len(iterable), chunk_size):
        yield iterable[i:i + chunk_size]


def split_evenly(items, parts):
    """
    Split ``items`` into ``parts`` contiguous chunks whose sizes differ by at most one,
    larger chunks first.
    """
    items = list(items)
    if parts < 2:
        return [items]
    if len(items) % parts == 0:
        size = len(items) // parts
        return list(chunks(items, size))
    result = []
    i = 0
    while i < len(items):
        size = math.ceil((len(items) - i) / parts)
        result.append(items[i:i + size])
        i += size
        parts -= 1
    return result


def reflow(lines, budget=1000):
    """
    Group ordered lines into as few contiguous groups as possible so that no group's joined
    text exceeds ``budget`` characters. A single oversized line ends up alone in its group.
    """
    lines = list(lines)
    if not lines:
        return []
    sections = 1
    groups = [lines]
    while any(len('\n'.join(group)) > budget for group in groups) and sections < len(lines):
        sections += 1
        groups = split_evenly(lines, sections)
    return groups


def abbreviate(number, digits=1):
    number = float(number)
    magnitude = 0
    while abs(number) >= 1000 and magnitude < len(ABBREVIATIONS) - 1:
        number /= 1000
        magnitude += 1
    formatted = f'{number:.{digits}f}'.rstrip('0').rstrip('.')
    return f'{formatted}{ABBREVIATIONS[magnitude]}'


def money(value):
    return f'${value:,.0f}'


def pluralize_author(author):
    author += "'" if author[-1] == 's' else "'s"
    return author


def short_delta(moment, now=None):
    """Distance between ``moment`` and now, in the largest fitting unit: 40s, 3min, 2h, 5d, 4m, 1y."""
    now = now or datetime.datetime.utcnow()
    seconds = abs((now - moment).total_seconds())
    for unit, length in (('y', 31536000), ('m', 2592000), ('d', 86400), ('h', 3600), ('min', 60)):
        if seconds >= length:
            return f'{int(seconds // length)}{unit}'
    return f'{int(seconds)}s'


def natural_age(moment, now=None):
    now = now or datetime.datetime.utcnow()
    return humanize.naturaltime(now - moment)


def debug(interaction, text=''):
    guild = interaction.guild.name if interaction.guild else '-'
    channel = interaction.channel
    if channel is None or isinstance(channel, (discord.DMChannel, discord.PartialMessageable)):
        channel = 'Private Message'
    log.debug(f'[{guild}][{channel}][{interaction.user.display_name}] {text}')
