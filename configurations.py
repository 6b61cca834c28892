import os
from collections import ChainMap

import hjson as json

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Configurations:
    DEFAULTS_FILE = os.path.join(BASE_DIR, 'settings_default.json')
    CONFIG_FILE = os.getenv('AM4BOT_SETTINGS', 'settings.json')
    ENVIRONMENT_KEYS = {
        'am4_access_token': 'AM4_ACCESS_TOKEN',
        'support_invite': 'DISCORD_SERVER_INVITE',
        'database': 'AM4BOT_DATABASE',
    }

    def __init__(self):
        with open(self.DEFAULTS_FILE) as f:
            self.defaults = json.load(f)
        self.raw_config = {}
        if os.path.exists(self.CONFIG_FILE):
            with open(self.CONFIG_FILE) as f:
                self.raw_config = json.load(f)
        self.environment = {
            key: os.environ[variable]
            for key, variable in self.ENVIRONMENT_KEYS.items()
            if os.getenv(variable)
        }
        self.config = ChainMap(self.environment, self.raw_config, self.defaults)

    def get(self, key, default=None):
        return self.config.get(key, default)


CONFIG = Configurations()
