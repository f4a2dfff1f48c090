"""ZBØTS Backend Meta information.
   ZBØTS relays Discord prompts to an LLM provider using encrypted,
   per-guild API keys.
"""
__title__ = 'zbots'
__description__ = (
   'ZBØTS relays Discord prompts to an LLM provider using encrypted, '
   'per-guild API keys.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 ZBØTS'
__author__ = 'ZBØTS'
__author_email__ = 'dev@zbots.app'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/zbots/zbots-backend'
