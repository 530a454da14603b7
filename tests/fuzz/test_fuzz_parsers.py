import random
import string
import pytest
import yaml
from shopstack.PARSERS.dockerfile_parser import DockerfileParser
from shopstack.PARSERS.compose_parser import ComposeParser
from shopstack.PARSERS.env_parser import EnvParser
from shopstack.PARSERS.nginx_parser import NginxParser
from shopstack.exceptions import StackException


def random_string(rng, length, alphabet=string.printable):
    return ''.join(rng.choice(alphabet) for _ in range(length))


@pytest.fixture
def rng():
    return random.Random(1234)


def test_fuzz_dockerfile_parser(rng):
    parser = DockerfileParser()
    for _ in range(100):
        content = random_string(rng, rng.randint(0, 1000))
        assert isinstance(parser.parse_from_string(content), list)
        try:
            parser.parse_recipe(content, "fuzz")
        except StackException:
            pass


def test_fuzz_compose_parser(rng):
    parser = ComposeParser(context={}, strict=False)
    for _ in range(100):
        content = random_string(rng, rng.randint(0, 1000))
        try:
            # random junk is either empty YAML or rejected as malformed
            parser.parse_from_string(content)
        except StackException:
            pass


def test_fuzz_env_parser(rng):
    for _ in range(100):
        content = random_string(rng, rng.randint(0, 1000))
        assert isinstance(EnvParser.parse_from_string(content), dict)


def test_fuzz_nginx_parser(rng):
    parser = NginxParser()
    for _ in range(100):
        content = random_string(rng, rng.randint(0, 300), alphabet=string.ascii_lowercase + " {};\n")
        try:
            parser.parse_from_string(content)
        except StackException:
            pass


def test_edge_cases_parsers():
    dockerfile_parser = DockerfileParser()
    compose_parser = ComposeParser(context={})

    # Empty string
    assert dockerfile_parser.parse_from_string("") == []
    assert compose_parser.parse_from_string("").services == {}

    # Only whitespace
    assert dockerfile_parser.parse_from_string("   \n\t  ") == []

    # Very long line
    assert len(dockerfile_parser.parse_from_string("RUN " + "a" * 10000)) == 1

    # Many line continuations
    assert len(dockerfile_parser.parse_from_string("RUN echo \\\n" * 100 + "hello")) == 1

    # Exec form with non-string members stays shell form
    inst = dockerfile_parser.parse_from_string('CMD [1, 2]')[0]
    assert not inst.exec_form
    assert inst.arguments == ['[1, 2]']

    # Documents that are not mappings
    for content in ("- a\n- b", "just text", "services: [a, b]", "services:\n  web: nginx"):
        with pytest.raises(StackException):
            compose_parser.parse_from_string(content)


SERVICE_KEYS = [
    "image", "build", "container_name", "environment", "ports", "volumes", "networks",
    "restart", "healthcheck", "depends_on", "deploy", "labels", "user",
]

ODD_VALUES = [
    None, 0, 7, -1, 3.5, True, "", "x", "abc:def", "8080:80", "/tmp", [], [1, 2], ["a"],
    [{"published": "abc", "target": 80}], [{"published": 80}], [{"type": "tmpfs"}],
    [{"type": "bind", "target": "/x"}], {}, {"a": 1}, {"replicas": "x"}, {"retries": "x"},
    {"test": 5, "interval": []}, {"context": 1, "args": [1]}, {"config": [{"subnet": 5}]},
]


def test_fuzz_compose_parser_with_wrongly_typed_fields(rng):
    """
    Well-formed YAML whose fields carry values of the wrong type is either
    accepted or rejected with a shopstack error, never another exception.
    """
    parser = ComposeParser(context={}, strict=False)
    for _ in range(300):
        service = {key: rng.choice(ODD_VALUES) for key in rng.sample(SERVICE_KEYS, rng.randint(1, 5))}
        doc = {"services": {"svc": service}}
        if rng.random() < 0.3:
            doc["networks"] = {"net": {"ipam": rng.choice(ODD_VALUES)}}
        try:
            parser.parse_from_string(yaml.safe_dump(doc))
        except StackException:
            pass
