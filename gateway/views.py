"""HTML views for the home page. Rendering is deterministic; every dynamic value is escaped."""

from __future__ import annotations

from html import escape
from typing import Iterable, List, Sequence

from gateway.auth.models import LocalUser, ProviderIdentity
from gateway.auth.providers import PROVIDERS

_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{title}</title>
</head>
<body>
{body}
</body>
</html>
"""


def _page(title: str, body: str) -> str:
    return _PAGE.format(title=escape(title), body=body)


def render_sign_in(providers: Iterable[str]) -> str:
    """Sign-in view: one login link per enabled provider."""
    lines: List[str] = ['<main class="signed-out">', "  <h1>Sign in</h1>"]
    names = list(providers)
    if not names:
        lines.append("  <p>No login providers are configured.</p>")
    else:
        lines.append("  <ul>")
        for name in names:
            spec = PROVIDERS.get(name)
            label = spec.display_name if spec else name
            lines.append(f'    <li><a href="/login/{escape(name)}">Sign in with {escape(label)}</a></li>')
        lines.append("  </ul>")
    lines.append("</main>")
    return _page("Sign in", "\n".join(lines))


def render_home(user: LocalUser, identities: Sequence[ProviderIdentity] = ()) -> str:
    """Signed-in view for the session's local user."""
    lines: List[str] = ['<main class="signed-in">', f"  <h1>Welcome, {escape(user.name or 'there')}</h1>"]
    if user.avatar_url:
        lines.append(f'  <img class="avatar" src="{escape(user.avatar_url)}" alt="avatar" width="96" height="96">')
    if user.email:
        lines.append(f'  <p class="email">{escape(user.email)}</p>')
    if identities:
        linked = ", ".join(
            escape(PROVIDERS[i.provider].display_name if i.provider in PROVIDERS else i.provider) for i in identities
        )
        lines.append(f'  <p class="providers">Signed in with: {linked}</p>')
    lines.append('  <a href="/logout">Log out</a>')
    lines.append("</main>")
    return _page("Home", "\n".join(lines))
