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

import dataclasses
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..fetch.k8sobject import NGINX_GATEWAY_GROUP, KubernetesObject, NamespacedName
from . import field
from .conditions import Condition, snippets_filter_invalid

SNIPPETS_FILTER_KIND = "SnippetsFilter"

NGINX_CONTEXT_MAIN = "main"
NGINX_CONTEXT_HTTP = "http"
NGINX_CONTEXT_HTTP_SERVER = "http.server"
NGINX_CONTEXT_HTTP_SERVER_LOCATION = "http.server.location"

NGINX_CONTEXTS = [
    NGINX_CONTEXT_MAIN,
    NGINX_CONTEXT_HTTP,
    NGINX_CONTEXT_HTTP_SERVER,
    NGINX_CONTEXT_HTTP_SERVER_LOCATION,
]


@dataclasses.dataclass
class SnippetsFilter:
    source: KubernetesObject
    snippets: Dict[str, str] = dataclasses.field(default_factory=dict)
    conditions: List[Condition] = dataclasses.field(default_factory=list)
    valid: bool = False

    # Set once some route refers to this filter.
    referenced: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": str(self.source.key),
            "valid": self.valid,
            "referenced": self.referenced,
            "contexts": sorted(self.snippets.keys()),
            "conditions": [c.as_dict() for c in self.conditions],
        }


def validate_snippets_filter_errors(source: KubernetesObject) -> field.ErrorList:
    """
    Check the snippets in a SnippetsFilter, returning every problem found, in
    the order of the snippets.
    """
    errs = field.ErrorList()
    snippets_path = field.Path("spec", "snippets")
    snippets = source.spec.get("snippets") or []

    if not snippets:
        errs.append(field.required(snippets_path, "at least one snippet must be provided"))
        return errs

    used_contexts = set()

    for i, snippet in enumerate(snippets):
        entry_path = snippets_path.index(i)
        context = snippet.get("context") or ""

        if not snippet.get("value"):
            errs.append(field.required(entry_path.child("value"), "value cannot be empty"))

        ctx_path = entry_path.child("context")

        if context not in NGINX_CONTEXTS:
            errs.append(field.not_supported(ctx_path, context, NGINX_CONTEXTS))

        if context in used_contexts:
            errs.append(field.invalid(ctx_path, context, "only one snippet is allowed per context"))
            continue

        used_contexts.add(context)

    return errs


def validate_snippets_filter(source: KubernetesObject) -> Optional[Condition]:
    """
    Return the condition that rejects the SnippetsFilter, or None if it's fine.
    Several problems are reported together in one condition.
    """
    message = validate_snippets_filter_errors(source).to_aggregate()

    if message is None:
        return None

    return snippets_filter_invalid(message)


def process_snippets_filters(
    filters: Mapping[NamespacedName, KubernetesObject]
) -> Dict[NamespacedName, SnippetsFilter]:
    processed: Dict[NamespacedName, SnippetsFilter] = {}

    for nsname, source in filters.items():
        cond = validate_snippets_filter(source)

        if cond:
            processed[nsname] = SnippetsFilter(source=source, conditions=[cond], valid=False)
            continue

        processed[nsname] = SnippetsFilter(
            source=source,
            valid=True,
            snippets={s["context"]: s["value"] for s in source.spec.get("snippets") or []},
        )

    return processed


def snippets_filter_resolver(
    filters: Mapping[NamespacedName, SnippetsFilter], namespace: str
) -> Callable[[Mapping[str, Any]], Optional[SnippetsFilter]]:
    """
    Return a function that looks up the SnippetsFilter a route's extensionRef
    (in the given namespace) names, marking it referenced. References to
    anything other than a SnippetsFilter give None, as do dangling ones.
    """

    def resolve(ref: Mapping[str, Any]) -> Optional[SnippetsFilter]:
        if not filters:
            return None

        if ref.get("group") != NGINX_GATEWAY_GROUP or ref.get("kind") != SNIPPETS_FILTER_KIND:
            return None

        sf = filters.get(NamespacedName(namespace, ref.get("name") or ""))

        if sf is None:
            return None

        sf.referenced = True

        return sf

    return resolve
