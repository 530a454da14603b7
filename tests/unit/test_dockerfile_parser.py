import pytest
from shopstack.PARSERS.dockerfile_parser import DockerfileParser
from shopstack.exceptions import ParseError

BACKEND_DOCKERFILE = """
# ---------- Build Stage ----------
FROM node:13.12.0-alpine AS builder

WORKDIR /app

COPY package*.json ./
RUN npm ci --only=production && npm cache clean --force

COPY . .

# ---------- Runtime Stage ----------
FROM node:13.12.0-alpine

RUN addgroup -g 1001 -S nodejs && adduser -S nodeuser -u 1001

WORKDIR /app

COPY --from=builder --chown=nodeuser:nodejs /app/node_modules ./node_modules
COPY --from=builder --chown=nodeuser:nodejs /app/server.js ./

RUN mkdir -p uploads && chown nodeuser:nodejs uploads

USER nodeuser

EXPOSE 5000

CMD ["npm", "start"]
"""


def test_parse_from_string():
    content = """
    FROM python:3.9-slim
    WORKDIR /app
    COPY . .
    RUN pip install -r requirements.txt \\
        && echo "done"
    ENV PORT=8080
    CMD ["python", "app.py"]
    """
    parser = DockerfileParser()
    instructions = parser.parse_from_string(content)

    inst_names = [i.instruction for i in instructions]
    assert inst_names == ["FROM", "WORKDIR", "COPY", "RUN", "ENV", "CMD"]

    cmd_inst = next(i for i in instructions if i.instruction == "CMD")
    assert cmd_inst.arguments == ["python", "app.py"]
    assert cmd_inst.exec_form

    run_inst = next(i for i in instructions if i.instruction == "RUN")
    assert "&& echo \"done\"" in run_inst.arguments[0]


def test_parse_recipe_splits_stages():
    recipe = DockerfileParser().parse_recipe(BACKEND_DOCKERFILE, "backend")

    assert len(recipe.stages) == 2
    assert recipe.stages[0].alias == "builder"
    assert recipe.runtime.base_image == "node:13.12.0-alpine"
    assert recipe.runtime.alias is None
    assert recipe.runtime.user == "nodeuser"
    assert recipe.check_contract(require_non_root=True) == []


def test_single_stage_breaks_contract():
    recipe = DockerfileParser().parse_recipe("FROM node\nRUN npm ci\nUSER root\n", "api")
    problems = recipe.check_contract(require_non_root=True)
    assert len(problems) == 1
    assert "build stage" in problems[0]


def test_runtime_stage_with_tooling_and_root_user():
    content = (
        "FROM node AS builder\nRUN npm ci\n"
        "FROM node\nRUN npm install\nCOPY --from=deps /x /x\n"
    )
    problems = DockerfileParser().parse_recipe(content, "api").check_contract(require_non_root=True)
    assert any("build tooling" in p for p in problems)
    assert any("unknown stage 'deps'" in p for p in problems)
    assert any("non-root" in p for p in problems)


def test_instruction_before_from():
    with pytest.raises(ParseError):
        DockerfileParser().parse_recipe("RUN echo hi\nFROM alpine\n", "x")


def test_missing_file_raises():
    with pytest.raises(FileNotFoundError):
        DockerfileParser().parse("non_existent_file_12345.txt")
