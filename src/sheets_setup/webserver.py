"""Apache httpd.conf edits: global settings and per-site virtual hosts."""

import re
from pathlib import Path, PurePath

from .textfile import LineFile, LineStatus, ensure_line

VHOST_TEMPLATE = """
<VirtualHost *:80>
    ServerName {server_name}
    DocumentRoot "{document_root}"
    <Directory "{document_root}">
        Options Indexes FollowSymLinks
        AllowOverride All
        Require all granted
    </Directory>
</VirtualHost>"""


def render_vhost(server_name: str, document_root) -> str:
    if isinstance(document_root, PurePath):
        root = document_root.as_posix()
    else:
        root = str(document_root).replace("\\", "/")
    return VHOST_TEMPLATE.format(server_name=server_name, document_root=root)


def apply_global_settings(text: str, user: str, group: str, include: str) -> str:
    """Force the run-as user/group and uncomment the ``include`` directive."""
    text = re.sub(r"^([ \t]*)User[ \t]+[^\r\n]*", lambda m: f"{m.group(1)}User {user}", text, flags=re.MULTILINE)
    text = re.sub(r"^([ \t]*)Group[ \t]+[^\r\n]*", lambda m: f"{m.group(1)}Group {group}", text, flags=re.MULTILINE)
    text = re.sub(
        r"^([ \t]*)#[ \t]*(Include[ \t]+" + re.escape(include) + r")[ \t]*$",
        r"\1\2",
        text,
        flags=re.MULTILINE,
    )
    return text


def server_name_pattern(server_name: str) -> str:
    return r"^\s*ServerName\s+" + re.escape(server_name) + r"\s*$"


def register_vhost(
    conf: Path,
    server_name: str,
    document_root,
    user: str,
    group: str,
    include: str,
) -> LineStatus:
    """Apply global settings, then append the host block unless already declared."""
    httpd = LineFile(conf)
    text = httpd.read_text()
    updated = apply_global_settings(text, user, group, include)
    if updated != text:
        httpd.write_text(updated)
    return ensure_line(
        httpd,
        render_vhost(server_name, document_root),
        present=server_name_pattern(server_name),
    )
