import re
import urllib.parse

import aiohttp

from base_bot import ClientError, log
from configurations import CONFIG

HYPERLINK = re.compile(r'\[([^\]]+)\]')
URL = re.compile(r'((([A-Za-z]{3,9}:(?://)?)(?:[-;:&=+$,\w]+@)?[A-Za-z0-9.-]+|(?:www\.|[-;:&=+$,\w]+@)[A-Za-z0-9.-]+)'
                 r'((?:/[+~%/.\w-]*)?\??(?:[-+=&;%@.\w]*)#?(?:\w*))?)')
HEX_COLOR = re.compile(r'#?([a-fA-F\d]{6}|[a-fA-F\d]{3})')
FILE_NAME = re.compile(r'[a-zA-Z]+')
QR_FORMATS = ('png', 'svg')
EC_LEVELS = ('L', 'M', 'Q', 'H')


def definition_url(term):
    return f'https://www.urbandictionary.com/define.php?{urllib.parse.urlencode({"term": term})}'


def link_terms(text):
    """Turn urban dictionary's ``[term]`` references into markdown links to their definitions."""
    return HYPERLINK.sub(lambda m: f'[{m.group(1)}]({definition_url(m.group(1))})', text)


class Lookups:
    def __init__(self, session):
        self.session = session

    @property
    def timeout(self):
        return aiohttp.ClientTimeout(total=CONFIG.get('request_timeout_seconds', 10))

    async def urban_definition(self, term):
        params = {'term': term}
        async with self.session.get(CONFIG.get('urban_dictionary_url'), params=params, timeout=self.timeout,
                                    raise_for_status=True) as r:
            data = await r.json()
        if not data or not data.get('list'):
            raise ClientError(f'No results found for **{term}**...')
        definition = dict(data['list'][0])
        definition['definition'] = link_terms(definition.get('definition', '')).strip()
        definition['example'] = link_terms(definition.get('example', '')).strip()
        return definition

    async def random_fact(self):
        async with self.session.get(CONFIG.get('useless_facts_url'), params={'language': 'en'},
                                    timeout=self.timeout, raise_for_status=True) as r:
            data = await r.json(content_type=None)
        if not data or not data.get('text'):
            raise ClientError('Something went wrong with finding a random fact...')
        return data['text']

    @staticmethod
    def qr_parameters(text, name, file_format=None, dark=None, light=None, size=None, margin=None, ec_level=None):
        if not FILE_NAME.fullmatch(name):
            raise ClientError('Invalid file name. The QR-code file name can only contain letters!')
        text = text.strip()
        if not URL.search(text):
            raise ClientError('That is not a valid URL...')
        params = {'text': text, 'format': file_format or 'png'}
        if params['format'] not in QR_FORMATS:
            raise ClientError('That is not a valid image format...')
        for key, value, error in (('dark', dark, 'That is not a valid QR-code colour...'),
                                  ('light', light, 'That is not a valid background colour...')):
            if value is None:
                continue
            match = HEX_COLOR.fullmatch(value.strip())
            if not match:
                raise ClientError(error)
            params[key] = match.group(1).lower()
        if size is not None:
            params['size'] = str(size)
        if margin is not None:
            params['margin'] = str(margin)
        if ec_level is not None:
            if ec_level not in EC_LEVELS:
                raise ClientError('That is not a valid error correction level...')
            params['ecLevel'] = ec_level
        return params

    async def qr_code(self, text, name, **options):
        """Return ``(file name, image bytes)`` of a QR code pointing at ``text``."""
        params = self.qr_parameters(text, name, **options)
        url = f'{CONFIG.get("quickchart_url")}/qr'
        async with self.session.get(url, params=params, timeout=self.timeout, raise_for_status=True) as r:
            image = await r.read()
        log.debug(f'[QuickChart] QR code for {text} created, {len(image)} bytes.')
        return f'{name}.{params["format"]}', image
