from typing import Annotated

import pytest

from keel import KeelField, Model, Query
from keel.dialect import Dialect
from keel.exceptions import ConfigurationError, QueryValidationError
from keel.query.nodes import Comparison, Group, InList, NullCheck


@pytest.fixture
def User():
    class User(Model, table="users"):
        id: Annotated[int | None, KeelField(primary_key=True)] = None
        name: str = ""
        status: str = "active"
        age: int = 0
        role: str = "member"
        active: bool = True
        tags: list[str] = []
        bio: str = ""

    return User


@pytest.fixture
def Post():
    class Post(Model, table="posts"):
        id: Annotated[int | None, KeelField(primary_key=True)] = None
        user_id: int | None = None
        title: str = ""

    return Post


def test_field_proxy_on_model_class(User):
    expr = User.age >= 18

    assert isinstance(expr, Comparison)
    assert expr.column == "age"
    assert expr.operator == ">="
    assert expr.value == 18


def test_model_where_returns_query(User):
    query = User.where(User.age >= 21)

    assert isinstance(query, Query)
    assert len(query.where_clause) == 1
    assert query.where_clause[0].value == 21


def test_where_call_forms(User):
    query = (
        User.query()
        .where("status", "active")
        .where("age", ">", 18)
        .where("role", "in", ["admin", "owner"])
        .where("age", "not between", (1, 5))
        .where("bio", "is not null", None)
    )

    kinds = [type(node) for node in query.where_clause]
    assert kinds[:2] == [Comparison, Comparison]
    assert isinstance(query.where_clause[2], InList)
    assert query.where_clause[3].operator == "NOT BETWEEN"
    assert isinstance(query.where_clause[4], NullCheck)
    assert query.where_clause[4].is_not


def test_where_none_is_rejected(User):
    with pytest.raises(QueryValidationError, match="where_null"):
        User.query().where("bio", None)
    with pytest.raises(QueryValidationError):
        User.query().where("bio", "!=", None)
    with pytest.raises(QueryValidationError):
        User.query().where((User.age > 1) | (User.bio == None))  # noqa: E711


def test_documented_scenario_sql(User):
    query = (
        User.query()
        .where("status", "active")
        .where("age", ">", 18)
        .order_by("name", "DESC")
        .limit(10, 5)
    )

    compiled = query.to_sql()
    assert compiled.sql == (
        "SELECT * FROM users WHERE status = ? AND age > ? "
        "ORDER BY name DESC LIMIT 10 OFFSET 5"
    )
    assert compiled.params == ["active", 18]


@pytest.mark.asyncio
async def test_documented_scenario_executes(User, recorder):
    driver = await recorder([{"id": 7, "name": "Ann", "status": "active", "age": 30}])

    users = await (
        User.query()
        .where("status", "active")
        .where("age", ">", 18)
        .order_by("name", "DESC")
        .limit(10, 5)
        .get()
    )

    assert driver.statements == [
        (
            "SELECT * FROM users WHERE status = ? AND age > ? "
            "ORDER BY name DESC LIMIT 10 OFFSET 5",
            ["active", 18],
        )
    ]
    assert [u.id for u in users] == [7]
    assert isinstance(users[0], User)


def test_order_by_validates_direction(User):
    with pytest.raises(QueryValidationError):
        User.query().order_by("name", "sideways")

    query = User.query().order_by(User.name, "desc")
    assert query.order_by_clause[-1] == ("name", "DESC")


def test_limit_and_offset_validation(User):
    with pytest.raises(QueryValidationError):
        User.query().limit(-1)
    with pytest.raises(QueryValidationError):
        User.query().offset(-5)


def test_groups_nest_and_join(User):
    query = (
        User.query()
        .where("active", True)
        .or_where_group(
            lambda q: q.where("role", "admin").where_group(
                lambda inner: inner.where("role", "owner").where("age", ">", 40)
            )
        )
    )

    compiled = query.to_sql()
    assert compiled.sql == (
        "SELECT * FROM users WHERE active = ? AND (role = ? OR (role = ? AND age > ?))"
    )
    assert compiled.params == [True, "admin", "owner", 40]
    assert query.group_depth == 0


def test_empty_group_is_not_added(User):
    query = User.query().where_group(lambda q: None)
    assert query.where_clause == []


def test_where_in_with_empty_sequence(User):
    compiled = User.query().where_in("id", []).where("status", "active").to_sql()

    assert "IN ()" not in compiled.sql
    assert compiled.sql == "SELECT * FROM users WHERE status = ?"


def test_typed_helpers(User):
    compiled = (
        User.query()
        .where_not_in(User.role, ["banned"])
        .where_between("age", 18, 65)
        .where_null("bio")
        .where_not_null(User.name)
        .to_sql()
    )
    assert compiled.sql == (
        "SELECT * FROM users WHERE role NOT IN (?) AND age BETWEEN ? AND ? "
        "AND bio IS NULL AND name IS NOT NULL"
    )


def test_where_raw_accepts_whitelisted_fields(User):
    query = User.query().where_raw(
        "LOWER(name) = ? AND age > 18 AND status IN ('active', 'pending')", ["ann"]
    )
    compiled = query.to_sql()
    assert compiled.params == ["ann"]
    assert compiled.sql.endswith("status IN ('active', 'pending')")


@pytest.mark.parametrize(
    "sql",
    [
        "age > 1; DROP TABLE users",
        "id IN (SELECT id FROM users) OR 1=1; delete from users",
        "name = 'x' OR truncate",
    ],
)
def test_where_raw_rejects_dangerous_keywords(User, sql):
    with pytest.raises(QueryValidationError, match="dangerous"):
        User.query().where_raw(sql)


def test_where_raw_rejects_unknown_fields(User):
    with pytest.raises(QueryValidationError, match="password"):
        User.query().where_raw("password = ?", ["x"])


@pytest.mark.parametrize("sql", ['"secret" = ?', "`secret` = ?", 'name = ? OR "secret" = ?'])
def test_where_raw_checks_quoted_identifiers(User, sql):
    with pytest.raises(QueryValidationError, match="Field secret is not allowed"):
        User.query().where_raw(sql, ["x"])


def test_where_raw_accepts_quoted_whitelisted_identifiers(User):
    # a double-quoted word inside a string literal is just text
    compiled = User.query().where_raw(
        '"name" = ? AND `age` > ? AND bio != \'"secret"\'', ["a", 1]
    ).to_sql()
    assert compiled.params == ["a", 1]


def test_where_raw_matches_keywords_as_whole_words(User):
    class Audit(Model):
        id: int | None = None
        updated_by: str = ""

    # "updated_by" contains UPDATE but is not the keyword
    Audit.query().where_raw("updated_by = ?", ["me"])


def test_where_exists_builds_correlated_subquery(User, Post):
    compiled = (
        User.query()
        .where_exists(
            Post,
            lambda q: q.where_column("posts.user_id", "=", "users.id").where(
                "title", "like", "%keel%"
            ),
        )
        .to_sql()
    )
    assert compiled.sql == (
        "SELECT * FROM users WHERE EXISTS "
        "(SELECT 1 FROM posts WHERE posts.user_id = users.id AND title LIKE ?)"
    )
    assert compiled.params == ["%keel%"]


def test_where_column_rejects_expressions(User):
    with pytest.raises(QueryValidationError):
        User.query().where_column("id", "=", "1; DROP TABLE users")


@pytest.mark.asyncio
async def test_dialect_specific_helpers_on_sqlite(User, recorder):
    await recorder()

    compiled = (
        User.query()
        .where_json_contains("tags", "python")
        .where_json_length("tags", ">", 1)
        .where_full_text(["name", "bio"], "keel")
        .to_sql()
    )
    assert compiled.sql == (
        "SELECT * FROM users WHERE "
        "EXISTS (SELECT 1 FROM json_each(tags) WHERE json_each.value = ?) "
        "AND json_array_length(tags) > ? AND (name LIKE ? OR bio LIKE ?)"
    )
    assert compiled.params == ["python", 1, "%keel%", "%keel%"]


@pytest.mark.asyncio
async def test_dialect_specific_helpers_on_mysql(User, recorder):
    await recorder(dialect=Dialect.MYSQL)

    compiled = (
        User.query()
        .where_json_contains("tags", ["a", "b"])
        .where_full_text(["bio"], "+keel -orm", mode="boolean")
        .where_date("bio", ">=", "2024-01-01")
        .to_sql()
    )
    assert compiled.sql == (
        "SELECT * FROM users WHERE JSON_CONTAINS(tags, ?) "
        "AND MATCH(bio) AGAINST(? IN BOOLEAN MODE) AND DATE(bio) >= ?"
    )
    assert compiled.params == ['["a","b"]', "+keel -orm", "2024-01-01"]


@pytest.mark.asyncio
async def test_dialect_helpers_check_fields(User, recorder):
    await recorder()
    with pytest.raises(QueryValidationError):
        User.query().where_json_contains("secret", 1)


@pytest.mark.asyncio
async def test_terminal_operations_reset_state(User, recorder):
    await recorder([], [{"total": 3}], [{"total": 0}], [])
    query = User.query().where("status", "active").order_by("name").limit(2)

    await query.all()
    assert query.state.is_empty()
    assert query.to_sql().sql == "SELECT * FROM users"

    query.where("age", ">", 1)
    assert await query.count() == 3
    assert query.state.is_empty()

    query.where("age", ">", 100)
    assert await query.exists() is False
    assert query.state.is_empty()

    query.where("name", "nobody")
    assert await query.first() is None
    assert query.state.is_empty()


@pytest.mark.asyncio
async def test_state_is_reset_when_execution_fails(User, recorder):
    driver = await recorder()

    async def boom(sql, params=()):
        raise RuntimeError("connection lost")

    driver.query = boom
    query = User.query().where("status", "active")

    with pytest.raises(RuntimeError, match="connection lost"):
        await query.all()
    assert query.state.is_empty()


@pytest.mark.asyncio
async def test_first_sets_limit(User, recorder):
    driver = await recorder([{"id": 1, "name": "Ann"}])

    user = await User.query().where("name", "Ann").first()

    assert user.name == "Ann"
    assert driver.statements[0][0] == "SELECT * FROM users WHERE name = ? LIMIT 1"


@pytest.mark.asyncio
async def test_select_sum_returns_plain_rows(User, recorder):
    driver = await recorder([{"total_age": 90}], [{"total_age": 90, "n": 3}])

    rows = await User.query().select_sum("age", "total_age").where("active", True).all()
    assert rows == [{"total_age": 90}]
    assert driver.statements[0][0] == (
        "SELECT SUM(age) AS total_age FROM users WHERE active = ?"
    )

    totals = await User.query().select_sum("age", "total_age").select_sum("id", "n").sum()
    assert totals == {"total_age": 90, "n": 3}


@pytest.mark.asyncio
async def test_sum_without_projection_fails(User, recorder):
    await recorder()
    with pytest.raises(QueryValidationError):
        await User.query().sum()


@pytest.mark.asyncio
async def test_paginate(User, recorder):
    rows = [{"id": i, "name": f"u{i}"} for i in range(11, 21)]
    driver = await recorder([{"total": 25}], rows)

    page = await User.query().where("active", True).order_by("id").paginate(10, page=2)

    assert page.total == 25
    assert page.per_page == 10
    assert page.current_page == 2
    assert page.last_page == 3
    assert [u.id for u in page.data] == list(range(11, 21))
    assert driver.statements == [
        ("SELECT COUNT(*) AS total FROM users WHERE active = ?", [True]),
        ("SELECT * FROM users WHERE active = ? ORDER BY id ASC LIMIT 10 OFFSET 10", [True]),
    ]


@pytest.mark.asyncio
async def test_paginate_validates_arguments(User, recorder):
    driver = await recorder()
    with pytest.raises(QueryValidationError):
        await User.query().paginate(0)
    with pytest.raises(QueryValidationError):
        await User.query().paginate(10, page=0)
    assert driver.statements == []


def test_soft_delete_scopes(User):
    class Doc(Model, table="docs", soft_deletes=True):
        id: int | None = None
        deleted_at: str | None = None

    assert Doc.only_trashed().to_sql().sql == "SELECT * FROM docs WHERE deleted_at IS NOT NULL"
    assert Doc.query().without_trashed().to_sql().sql == (
        "SELECT * FROM docs WHERE deleted_at IS NULL"
    )
    assert Doc.with_trashed().to_sql().sql == "SELECT * FROM docs"

    with pytest.raises(ConfigurationError):
        User.only_trashed()
    with pytest.raises(ConfigurationError):
        User.with_trashed()


def test_group_of_conditions_from_operators(User):
    query = User.where((User.role == "admin") | (User.role == "owner"))
    assert isinstance(query.where_clause[0], Group)
    assert query.to_sql().sql == "SELECT * FROM users WHERE (role = ? OR role = ?)"
