import pytest
from shopstack.PARSERS.nginx_parser import NginxParser
from shopstack.exceptions import ParseError

SPA_CONF = """
server {
    listen 80;
    server_name localhost;

    root /usr/share/nginx/html;
    index index.html index.htm;

    # Serve the bundle, fall back to the app shell for client-side routes
    location / {
        try_files $uri $uri/ /index.html;
    }

    location /api/ {
        root /should/not/apply;
    }

    gzip on;
    gzip_types text/plain text/css application/json;
}
"""


def test_parse_from_string():
    proxy = NginxParser().parse_from_string(SPA_CONF)
    assert proxy.listen == 80
    assert proxy.root == "/usr/share/nginx/html"
    assert proxy.index == ["index.html", "index.htm"]
    assert proxy.fallback == "/index.html"
    assert proxy.gzip_types == ["text/plain", "text/css", "application/json"]


def test_listen_with_address():
    proxy = NginxParser().parse_from_string("server { listen 0.0.0.0:8080; gzip off; }")
    assert proxy.listen == 8080
    assert not proxy.gzip


def test_http_wrapper():
    proxy = NginxParser().parse_from_string("http { server { listen 81; } }")
    assert proxy.listen == 81


@pytest.mark.parametrize("content", [
    "events { }",
    "server { listen 80;",
    "server { listen 80; } }",
    "server { listen 80 }",
    "server { listen unix:/var/run/nginx.sock; }",
])
def test_invalid(content):
    with pytest.raises(ParseError):
        NginxParser().parse_from_string(content)


def test_parse_file(tmp_path):
    conf = tmp_path / "nginx.conf"
    conf.write_text(SPA_CONF)
    assert NginxParser().parse(str(conf)).server_name == "localhost"
