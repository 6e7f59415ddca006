# Copyright 2021 Datawire. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License

import re
from typing import List, Optional

DNS1123_LABEL_FMT = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
DNS1123_SUBDOMAIN_FMT = DNS1123_LABEL_FMT + r"(\." + DNS1123_LABEL_FMT + r")*"
WILDCARD_DNS1123_SUBDOMAIN_FMT = r"\*\." + DNS1123_SUBDOMAIN_FMT

DNS1123_SUBDOMAIN_MAX_LENGTH = 253

_dns1123_subdomain = re.compile(DNS1123_SUBDOMAIN_FMT)
_wildcard_dns1123_subdomain = re.compile(WILDCARD_DNS1123_SUBDOMAIN_FMT)

DNS1123_SUBDOMAIN_ERROR = (
    "a lowercase RFC 1123 subdomain must consist of lower case alphanumeric characters, "
    "'-' or '.', and must start and end with an alphanumeric character "
    f"(e.g. 'example.com', regex used for validation is '{DNS1123_SUBDOMAIN_FMT}')"
)

WILDCARD_DNS1123_SUBDOMAIN_ERROR = (
    "a wildcard DNS-1123 subdomain must start with '*.', followed by a valid DNS subdomain, "
    "which must consist of lower case alphanumeric characters, '-' or '.' and end with an "
    f"alphanumeric character (e.g. '*.example.com', regex used for validation is "
    f"'{WILDCARD_DNS1123_SUBDOMAIN_FMT}')"
)


def is_dns1123_subdomain(value: str) -> List[str]:
    """
    Return the reasons value isn't a DNS-1123 subdomain; empty if it is one.
    """
    errs = []

    if len(value) > DNS1123_SUBDOMAIN_MAX_LENGTH:
        errs.append(f"must be no more than {DNS1123_SUBDOMAIN_MAX_LENGTH} characters")

    if not _dns1123_subdomain.fullmatch(value):
        errs.append(DNS1123_SUBDOMAIN_ERROR)

    return errs


def is_wildcard_dns1123_subdomain(value: str) -> List[str]:
    errs = []

    if len(value) > DNS1123_SUBDOMAIN_MAX_LENGTH:
        errs.append(f"must be no more than {DNS1123_SUBDOMAIN_MAX_LENGTH} characters")

    if not _wildcard_dns1123_subdomain.fullmatch(value):
        errs.append(WILDCARD_DNS1123_SUBDOMAIN_ERROR)

    return errs


def validate_hostname(hostname: str) -> Optional[str]:
    """
    Check that hostname is either a DNS-1123 subdomain or a wildcard subdomain
    (a single '*.' label in front of a subdomain). Returns None if it's fine,
    otherwise a description of the problem.
    """

    if hostname == "":
        return "cannot be empty string"

    if "*" in hostname:
        errs = is_wildcard_dns1123_subdomain(hostname)
    else:
        errs = is_dns1123_subdomain(hostname)

    if errs:
        return ", ".join(errs)

    return None


def _wildcard_matches(wildcard: str, hostname: str) -> bool:
    # "*.example.com" covers "foo.example.com" and "a.b.example.com", but not
    # "example.com" itself.
    return wildcard.startswith("*.") and hostname.endswith(wildcard[1:])


def have_overlap(hostname1: Optional[str], hostname2: Optional[str]) -> bool:
    """
    Could a request match both hostname1 and hostname2? A missing or empty
    hostname matches everything. Two different wildcards don't overlap, nor do
    two different concrete hostnames. The relation is symmetric.
    """

    if not hostname1 or not hostname2:
        return True

    if hostname1 == hostname2:
        return True

    wild1 = hostname1.startswith("*.")
    wild2 = hostname2.startswith("*.")

    if wild1 == wild2:
        return False

    if wild1:
        return _wildcard_matches(hostname1, hostname2)

    return _wildcard_matches(hostname2, hostname1)
