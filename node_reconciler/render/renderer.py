"""Template renderer: replaces ``${KEY}`` tokens in packaged templates.

Text-level replacement only, so comments and key ordering in the
templates come out byte-for-byte.  Bodies of the Fluentd config files,
the daemonset manifest, ``registries.conf`` and the Docker systemd
drop-in all go through here; the reconciler itself never assembles
those bodies by string concatenation.
"""

from __future__ import annotations

import re
from importlib import resources
from typing import FrozenSet, List, Mapping, Optional

#: Package holding the template files.
ASSET_PACKAGE = "node_reconciler.render.assets"

_TOKEN_RE = re.compile(r"\$\{([A-Z0-9_]+)\}")


def render_template(
    template_text: str,
    variables: Mapping[str, str],
    *,
    required_keys: Optional[FrozenSet[str]] = None,
    strict: bool = False,
) -> str:
    """Replace every ``${KEY}`` token in *template_text*.

    Parameters
    ----------
    template_text:
        Raw template content.
    variables:
        Mapping of key -> value (keys without the ``${}`` wrapper).
    required_keys:
        Keys that must be present in *variables* with a non-empty value.
    strict:
        When *True*, tokens left unresolved after substitution are an error.

    Raises
    ------
    ValueError
        If a required key is missing/empty, or (strict) a token is unresolved.
    """
    if required_keys:
        missing: List[str] = sorted(k for k in required_keys if not variables.get(k))
        if missing:
            raise ValueError(
                f"Missing required template variable(s): {', '.join(missing)}"
            )

    # Sorted order keeps the result independent of mapping insertion order.
    result = template_text
    for key in sorted(variables):
        result = result.replace("${" + key + "}", str(variables[key]))

    if strict:
        leftover = sorted(set(_TOKEN_RE.findall(result)))
        if leftover:
            raise ValueError(f"Unresolved template token(s): {', '.join(leftover)}")
    return result


def load_asset(name: str) -> str:
    """Return the text of packaged template *name*.

    Raises :class:`FileNotFoundError` if there is no such asset.
    """
    ref = resources.files(ASSET_PACKAGE).joinpath(name)
    if not ref.is_file():
        raise FileNotFoundError(f"Template asset not found: {name}")
    return ref.read_text(encoding="utf-8")


def render_asset(
    name: str,
    variables: Mapping[str, str],
    *,
    required_keys: Optional[FrozenSet[str]] = None,
) -> str:
    """Load packaged template *name* and render it strictly."""
    return render_template(
        load_asset(name), variables, required_keys=required_keys, strict=True,
    )

