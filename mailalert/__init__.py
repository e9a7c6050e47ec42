# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mail notification relay.

Receives MTA hook callbacks describing incoming mail and forwards a short
alert (sender, recipients, subject) to chat and push services:
- Header decoding (mime)
- Hook request parsing, metadata extraction and recipient filtering (hook/)
- Channel adapters for Telegram, ntfy and DingTalk (channels/)
- Concurrent per-channel delivery with retries (dispatch)
"""

__version__ = "1.0.0"
