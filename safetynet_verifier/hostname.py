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

"""Binding of the signing certificate to the attestation service hostname."""

from __future__ import annotations

import logging
from typing import List

from cryptography import x509
from cryptography.x509.oid import NameOID

from .exceptions import IssuerHostnameMismatch

logger = logging.getLogger(__name__)

#: The hostname the attestation service signs its responses for. Not
#: configurable at runtime.
ATTESTATION_HOSTNAME = "attest.android.com"


def _normalize(name: str) -> str:
    return name.strip().rstrip(".").lower()


def get_dns_identities(cert: x509.Certificate) -> List[str]:
    """Return the DNS identities of a certificate.

    The subjectAltName DNS entries are used when present, otherwise the most
    specific subject common name.
    """
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        names = []
    if names:
        return names
    cns = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if cns:
        value = cns[-1].value
        return [value if isinstance(value, str) else value.decode("utf-8", "replace")]
    return []


def match_hostname_pattern(pattern: str, hostname: str) -> bool:
    """Match ``hostname`` against a DNS name from a certificate.

    A wildcard is only honoured as the complete left-most label, and matches
    exactly one label.
    """
    pattern = _normalize(pattern)
    hostname = _normalize(hostname)
    if not pattern or not hostname:
        return False
    if "*" not in pattern:
        return pattern == hostname

    p_labels = pattern.split(".")
    h_labels = hostname.split(".")
    if p_labels[0] != "*" or "*" in ".".join(p_labels[1:]):
        return False
    # No wildcards directly under a public suffix like *.com
    if len(p_labels) < 3 or len(p_labels) != len(h_labels):
        return False
    return p_labels[1:] == h_labels[1:] and bool(h_labels[0])


def bind_hostname(
    cert: x509.Certificate, hostname: str = ATTESTATION_HOSTNAME
) -> x509.Certificate:
    """Confirm that ``cert`` identifies ``hostname``.

    :param cert: The verified leaf certificate.
    :param hostname: The expected hostname.
    :return: The certificate, unchanged.
    :raises IssuerHostnameMismatch: If no identity of the certificate matches.
    """
    identities = get_dns_identities(cert)
    for identity in identities:
        if match_hostname_pattern(identity, hostname):
            logger.debug("Certificate identity %s matches %s", identity, hostname)
            return cert
    raise IssuerHostnameMismatch(
        f"Certificate isn't issued for the hostname {hostname}, "
        f"certificate names: {', '.join(identities) or '<none>'}"
    )
