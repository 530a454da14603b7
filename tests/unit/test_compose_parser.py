import pytest
import yaml
from shopstack.PARSERS.compose_parser import ComposeParser
from shopstack.exceptions import MissingVariableError, ParseError

ORIGINAL_COMPOSE = """
services:
  redis:
    image: redis:7-alpine
    container_name: yolo-redis
    restart: unless-stopped
    ports:
      - "6379:6379"
    networks:
      - yolo-network
    healthcheck:
      test: ["CMD", "redis-cli", "ping"]
      interval: 30s
      timeout: 10s
      retries: 3
    labels:
      project: ${PROJECT_NAME}
      service: redis

  backend:
    build:
      context: ./backend
      dockerfile: Dockerfile
      args:
        NODE_ENV: ${NODE_ENV}
    image: yolo-backend:${PROJECT_VERSION}
    container_name: yolo-backend
    restart: unless-stopped
    environment:
      NODE_ENV: ${NODE_ENV}
      MONGODB_URI: ${MONGODB_URI}
      REDIS_URL: redis://redis:6379
      PORT: ${BACKEND_PORT}
    ports:
      - "${BACKEND_PORT}:5000"
    volumes:
      - ./backend/uploads:/app/uploads
    networks:
      - yolo-network
    healthcheck:
      test: ["CMD", "curl", "-f", "http://localhost:5000/api/products"]
      interval: 30s
      timeout: 10s
      retries: 3
      start_period: 40s
    depends_on:
      - redis

networks:
  yolo-network:
    driver: bridge
    ipam:
      config:
        - subnet: ${NETWORK_SUBNET}
          ip_range: ${NETWORK_IP_RANGE}
          gateway: ${NETWORK_GATEWAY}
"""


def test_parse(tmp_path):
    compose_content = {
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['8080:80'],
                'environment': {'DEBUG': 'true'},
                'restart': 'always'
            },
            'db': {
                'image': 'postgres:13',
                'volumes': ['./data:/var/lib/postgresql/data:ro'],
                'environment': ['POSTGRES_DB=shop'],
            }
        },
    }

    compose_file = tmp_path / "docker-compose.yml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f)

    config = ComposeParser(context={}).parse(str(compose_file))

    assert config.services['web'].image == 'nginx:latest'
    assert config.services['web'].ports[0].host == 8080
    assert config.services['web'].ports[0].container == 80
    assert config.services['web'].environment['DEBUG'] == 'true'
    assert config.services['web'].restart_policy.condition == 'always'

    assert config.services['db'].environment == {'POSTGRES_DB': 'shop'}
    assert config.services['db'].volumes[0].source == './data'
    assert config.services['db'].volumes[0].target == '/var/lib/postgresql/data'
    assert config.services['db'].volumes[0].read_only


def test_parse_original_manifest(stack_env):
    config = ComposeParser(context=stack_env).parse_from_string(ORIGINAL_COMPOSE)

    backend = config.services['backend']
    assert backend.image == 'yolo-backend:1.0.0'
    assert backend.build.context == './backend'
    assert backend.build.args == {'NODE_ENV': 'production'}
    assert backend.environment['MONGODB_URI'] == stack_env['MONGODB_URI']
    assert [str(p) for p in backend.ports] == ['5000:5000']
    assert backend.volumes[0].is_bind
    assert backend.health_check.start_period == 40.0
    assert backend.health_check.timeout == 10.0
    assert backend.depends_on == ['redis']
    assert not backend.wait_healthy

    redis = config.services['redis']
    assert redis.labels == {'project': 'yolo', 'service': 'redis'}
    assert redis.health_check.test == ['CMD', 'redis-cli', 'ping']

    network = config.networks['yolo-network']
    assert network.driver == 'bridge'
    assert network.ipam.gateway == '172.20.0.1'
    assert network.ipam.ip_range == '172.20.0.0/24'


def test_missing_variables_are_all_reported(stack_env):
    del stack_env['MONGODB_URI']
    del stack_env['NETWORK_GATEWAY']
    with pytest.raises(MissingVariableError) as excinfo:
        ComposeParser(context=stack_env).parse_from_string(ORIGINAL_COMPOSE)
    assert excinfo.value.names == ['MONGODB_URI', 'NETWORK_GATEWAY']


def test_non_strict_substitutes_empty_string():
    config = ComposeParser(context={}, strict=False).parse_from_string(
        "services:\n  web:\n    image: nginx${TAG}\n"
    )
    assert config.services['web'].image == 'nginx'


def test_depends_on_condition_marks_readiness_gate():
    content = """
services:
  api:
    image: api
    depends_on:
      cache:
        condition: service_healthy
  cache:
    image: redis
"""
    config = ComposeParser(context={}).parse_from_string(content)
    assert config.services['api'].depends_on == ['cache']
    assert config.services['api'].wait_healthy


def test_long_port_syntax_and_string_healthcheck():
    content = """
services:
  web:
    image: nginx
    ports:
      - target: 80
        published: 8080
        protocol: udp
    healthcheck:
      test: curl -f http://localhost
      interval: 1m30s
"""
    svc = ComposeParser(context={}).parse_from_string(content).services['web']
    assert svc.ports[0].host == 8080
    assert svc.ports[0].protocol == 'udp'
    assert svc.health_check.test == ['CMD-SHELL', 'curl -f http://localhost']
    assert svc.health_check.interval == 90.0


def test_port_without_host_side_is_rejected():
    with pytest.raises(ParseError):
        ComposeParser(context={}).parse_from_string("services:\n  web:\n    image: x\n    ports: ['80']\n")


def test_invalid_yaml_raises_parse_error():
    with pytest.raises(ParseError):
        ComposeParser(context={}).parse_from_string("services: [unclosed")


def test_long_volume_syntax_without_source():
    content = """
services:
  web:
    image: nginx
    volumes:
      - type: tmpfs
        target: /tmp
      - type: bind
        source: ./static
        target: /usr/share/nginx/html
        read_only: true
      - /var/cache/nginx
"""
    svc = ComposeParser(context={}).parse_from_string(content).services['web']
    tmpfs, static, anonymous = svc.volumes
    assert tmpfs.type == 'tmpfs' and tmpfs.source == '' and not tmpfs.is_bind
    assert static.is_bind and static.read_only
    assert anonymous.target == '/var/cache/nginx' and not anonymous.is_bind
    assert svc.bind_mounts == [static]


@pytest.mark.parametrize("service, message", [
    ({'image': 'x', 'ports': [{'published': 8080}]}, 'no target container port'),
    ({'image': 'x', 'ports': [{'published': 'abc', 'target': 80}]}, 'invalid port mapping'),
    ({'image': 'x', 'volumes': [{'type': 'bind', 'target': '/data'}]}, 'has no source'),
    ({'image': 'x', 'healthcheck': {'test': ['CMD', 'true'], 'retries': 'x'}}, 'web:'),
    ({'image': 'x', 'deploy': {'replicas': 'x'}}, 'web:'),
    ({'image': 'x', 'deploy': 3}, 'web:'),
    ({'image': 5}, 'web: image'),
    ({'image': 'x', 'build': {'context': '.', 'args': [1]}}, 'web:'),
])
def test_wrongly_typed_fields_raise_parse_error(service, message):
    with pytest.raises(ParseError) as excinfo:
        ComposeParser(context={}).parse_from_string(yaml.safe_dump({'services': {'web': service}}))
    assert message in str(excinfo.value)


def test_escaped_dollar_is_kept_literally():
    content = "services:\n  web:\n    image: x\n    environment:\n      GREETING: pa$$word\n"
    svc = ComposeParser(context={}).parse_from_string(content).services['web']
    assert svc.environment['GREETING'] == 'pa$word'
