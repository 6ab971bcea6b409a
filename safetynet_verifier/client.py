# Copyright (c) 2018 Yubico AB
# All rights reserved.
#
#   Redistribution and use in source and binary forms, with or
#   without modification, are permitted provided that the following
#   conditions are met:
#
#    1. Redistributions of source code must retain the above copyright
#       notice, this list of conditions and the following disclaimer.
#    2. Redistributions in binary form must reproduce the above
#       copyright notice, this list of conditions and the following
#       disclaimer in the documentation and/or other materials provided
#       with the distribution.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS
# "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT
# LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS
# FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE
# COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT,
# INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING,
# BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES;
# LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT
# LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN
# ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

"""Requesting an attestation and verifying the response."""

from __future__ import annotations

import abc
import asyncio
import logging
from concurrent.futures import Executor
from typing import Optional

from .exceptions import TokenSourceError
from .payload import VerificationContext
from .verifier import AttestationVerifier, VerificationResult

logger = logging.getLogger(__name__)


class TokenSource(abc.ABC):
    """Obtains signed attestation responses from the attestation service."""

    @abc.abstractmethod
    async def fetch_token(self, nonce: bytes) -> str:
        """Request an attestation for ``nonce``.

        :return: The compact JWS returned by the service.
        :raises TokenSourceError: If no token could be obtained.
        """


class AttestationClient:
    """Requests an attestation with a fresh nonce and verifies the response.

    Verification is CPU bound, it runs in ``executor`` (the default executor of
    the event loop when None) so that it doesn't block the loop.

    :param token_source: Where tokens come from.
    :param verifier: Verifies the tokens.
    :param timeout: Seconds to wait for the token source, or None.
    """

    def __init__(
        self,
        token_source: TokenSource,
        verifier: AttestationVerifier,
        timeout: Optional[float] = None,
        executor: Optional[Executor] = None,
    ):
        self.token_source = token_source
        self.verifier = verifier
        self.timeout = timeout
        self._executor = executor

    async def _fetch(self, nonce: bytes) -> str:
        try:
            return await asyncio.wait_for(
                self.token_source.fetch_token(nonce), timeout=self.timeout
            )
        except TokenSourceError:
            raise
        except asyncio.TimeoutError as e:
            raise TokenSourceError(
                f"No attestation response within {self.timeout}s"
            ) from e
        except OSError as e:
            raise TokenSourceError(f"Attestation request failed: {e}") from e

    async def request(
        self, context: Optional[VerificationContext] = None
    ) -> VerificationResult:
        """Perform one attestation round trip.

        :param context: The context of the request, a fresh one by default.
        :return: The result of verifying the response.
        :raises TokenSourceError: If the token source failed.
        """
        context = context or VerificationContext.create()
        token = await self._fetch(context.nonce)
        logger.debug("Received attestation response of %d characters", len(token))

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.verifier.verify, token, context
        )
