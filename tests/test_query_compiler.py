import unittest
import warnings
from datetime import date

from sqlalchemy import Boolean, Date, Integer, String, Text, create_engine
from sqlalchemy.exc import SADeprecationWarning, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from crudkit.services.query_compiler import compile_query, pagination_window, parse_filter_conditions
from crudkit.services.query_config import resolve_query_config


class _Base(DeclarativeBase):
    pass


class _Item(_Base):
    __tablename__ = "_qc_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(100))
    content: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20))
    score: Mapped[int] = mapped_column(Integer)
    featured: Mapped[bool] = mapped_column(Boolean)
    released_on: Mapped[date] = mapped_column(Date)
    secret: Mapped[str] = mapped_column(String(50))


ITEMS = [
    dict(id=1, title="Alpha", content="Intro to Ruby", status="published", score=10, featured=True,
         released_on=date(2026, 1, 1), secret="s1"),
    dict(id=2, title="Beta", content="Python tips", status="draft", score=20, featured=False,
         released_on=date(2026, 1, 2), secret="s2"),
    dict(id=3, title="Gamma", content="RUBY on rails", status="published", score=30, featured=False,
         released_on=date(2026, 1, 3), secret="s3"),
    dict(id=4, title="Delta", content="100% coverage", status="archived", score=40, featured=True,
         released_on=date(2026, 1, 4), secret="s4"),
    dict(id=5, title="Epsilon", content="under_score names", status="published", score=50, featured=False,
         released_on=date(2026, 1, 5), secret="s5"),
]

FULL_OPTIONS = {
    "filtering": {"enabled": True, "filterable_fields": ["status", "score", "featured", "released_on"]},
    "searching": {"enabled": True, "searchable_fields": ["title", "content"]},
    "sorting": {"enabled": True, "allowed_fields": ["id", "title", "score", "status"]},
    "pagination": {"enabled": True, "default_per": 2, "max_per": 3},
}


class _CompilerCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine("sqlite+pysqlite:///:memory:")
        _Base.metadata.create_all(cls.engine)
        with Session(cls.engine) as session:
            session.add_all([_Item(**item) for item in ITEMS])
            session.commit()

    @classmethod
    def tearDownClass(cls):
        cls.engine.dispose()

    def setUp(self):
        self.session = Session(self.engine)

    def tearDown(self):
        self.session.close()

    def _ids(self, options, params, *, ordered=True):
        query = self.session.query(_Item)
        if ordered:
            query = query.order_by(_Item.id.asc())
        result = compile_query(resolve_query_config(options), params, query)
        return [row.id for row in result.collection.all()], result.metadata


class FilteringStageTests(_CompilerCase):
    options = {"filtering": {"enabled": True, "filterable_fields": ["status", "score", "featured", "released_on"]}}

    def test_disabled_filtering_ignores_filter_param(self):
        ids, meta = self._ids({}, {"filter": {"status": "draft", "secret": "s1"}})
        self.assertEqual(ids, [1, 2, 3, 4, 5])
        self.assertEqual(meta, {"total": 5})

    def test_scalar_value_is_implicit_eq(self):
        ids, meta = self._ids(self.options, {"filter": {"status": "published"}})
        self.assertEqual(ids, [1, 3, 5])
        self.assertEqual(meta, {"total": 3})

    def test_field_outside_allow_list_is_dropped_for_every_operator(self):
        config = resolve_query_config(self.options)
        for op in ("eq", "neq", "gt", "gte", "lt", "lte", "in", "nin"):
            with self.subTest(op=op):
                self.assertEqual(parse_filter_conditions(config, {"secret": {op: "s1"}}), [])
        self.assertEqual(parse_filter_conditions(config, {"secret": "s1"}), [])
        ids, _ = self._ids(self.options, {"filter": {"secret": "s1"}})
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_comma_value_on_eq_means_set_membership(self):
        config = resolve_query_config(self.options)
        conditions = parse_filter_conditions(config, {"status": "published , draft"})
        self.assertEqual(len(conditions), 1)
        self.assertEqual(conditions[0].operator, "eq")
        self.assertEqual(conditions[0].value, ["published", "draft"])
        ids, _ = self._ids(self.options, {"filter": {"status": "published , draft"}})
        self.assertEqual(ids, [1, 2, 3, 5])

    def test_comma_value_on_neq_means_not_in(self):
        ids, _ = self._ids(self.options, {"filter": {"status": {"neq": "published,draft"}}})
        self.assertEqual(ids, [4])

    def test_list_value_on_eq_means_set_membership(self):
        ids, _ = self._ids(self.options, {"filter": {"status": ["draft", "archived"]}})
        self.assertEqual(ids, [2, 4])

    def test_ordered_comparisons_coerce_to_column_type(self):
        cases = {
            "gt": [3, 4, 5],
            "gte": [2, 3, 4, 5],
            "lt": [1],
            "lte": [1, 2],
        }
        for op, expected in cases.items():
            with self.subTest(op=op):
                ids, _ = self._ids(self.options, {"filter": {"score": {op: "20"}}})
                self.assertEqual(ids, expected)

    def test_ordered_comparison_value_is_not_comma_split(self):
        config = resolve_query_config(self.options)
        conditions = parse_filter_conditions(config, {"score": {"gt": "10,20"}})
        self.assertEqual(conditions[0].value, "10,20")

    def test_ordered_comparison_with_list_is_dropped(self):
        config = resolve_query_config(self.options)
        self.assertEqual(parse_filter_conditions(config, {"score": {"gt": ["1", "2"]}}), [])

    def test_in_with_scalar_becomes_one_element_list(self):
        config = resolve_query_config(self.options)
        conditions = parse_filter_conditions(config, {"status": {"in": "draft"}})
        self.assertEqual(conditions[0].value, ["draft"])
        ids, _ = self._ids(self.options, {"filter": {"status": {"in": "draft"}}})
        self.assertEqual(ids, [2])

    def test_nin_with_list(self):
        ids, _ = self._ids(self.options, {"filter": {"status": {"nin": ["published", "draft"]}}})
        self.assertEqual(ids, [4])

    def test_unrecognized_operator_is_dropped(self):
        ids, meta = self._ids(self.options, {"filter": {"status": {"like": "pub%"}}})
        self.assertEqual(ids, [1, 2, 3, 4, 5])
        self.assertEqual(meta, {"total": 5})

    def test_only_first_recognized_operator_is_used(self):
        config = resolve_query_config(self.options)
        conditions = parse_filter_conditions(config, {"score": {"foo": "1", "gte": "20", "lte": "30"}})
        self.assertEqual([(c.operator, c.value) for c in conditions], [("gte", "20")])

    def test_conditions_are_conjoined(self):
        ids, _ = self._ids(self.options, {"filter": {"status": "published", "score": {"gt": "10"}}})
        self.assertEqual(ids, [3, 5])

    def test_boolean_and_date_values_are_coerced(self):
        ids, _ = self._ids(self.options, {"filter": {"featured": "true"}})
        self.assertEqual(ids, [1, 4])
        ids, _ = self._ids(self.options, {"filter": {"released_on": {"gte": "2026-01-04"}}})
        self.assertEqual(ids, [4, 5])

    def test_non_mapping_filter_param_is_ignored(self):
        ids, _ = self._ids(self.options, {"filter": "status=draft"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_unknown_configured_column_fails_in_the_store(self):
        options = {"filtering": {"enabled": True, "filterable_fields": ["missing_column"]}}
        with self.assertRaises(SQLAlchemyError):
            self._ids(options, {"filter": {"missing_column": "x"}})
        self.session.rollback()


class SearchingStageTests(_CompilerCase):
    options = {"searching": {"enabled": True, "searchable_fields": ["title", "content"]}}

    def test_non_string_searchable_column_is_skipped(self):
        options = {"searching": {"enabled": True, "searchable_fields": ["score", "title"]}}
        with warnings.catch_warnings():
            warnings.simplefilter("error", SADeprecationWarning)
            ids, meta = self._ids(options, {"q": "alp"})
            self.assertEqual(ids, [1])
            self.assertEqual(meta, {"total": 1})
            ids, _ = self._ids({"searching": {"enabled": True, "searchable_fields": ["score"]}}, {"q": "10"})
            self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_case_insensitive_substring_across_fields(self):
        ids, meta = self._ids(self.options, {"q": "ruby"})
        self.assertEqual(ids, [1, 3])
        self.assertEqual(meta, {"total": 2})
        ids, _ = self._ids(self.options, {"q": "ALPHA"})
        self.assertEqual(ids, [1])

    def test_blank_term_is_skipped(self):
        ids, _ = self._ids(self.options, {"q": "   "})
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_no_searchable_fields_is_a_no_op(self):
        ids, _ = self._ids({"searching": {"enabled": True}}, {"q": "ruby"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_like_wildcards_in_term_are_literal(self):
        ids, _ = self._ids(self.options, {"q": "%"})
        self.assertEqual(ids, [4])
        ids, _ = self._ids(self.options, {"q": "_"})
        self.assertEqual(ids, [5])

    def test_search_is_conjoined_with_filters(self):
        options = dict(self.options, filtering={"enabled": True, "filterable_fields": ["status"]})
        ids, _ = self._ids(options, {"q": "ruby", "filter": {"status": "draft"}})
        self.assertEqual(ids, [])
        ids, _ = self._ids(options, {"q": "ruby", "filter": {"status": "published"}})
        self.assertEqual(ids, [1, 3])

    def test_disabled_searching_ignores_term(self):
        ids, _ = self._ids({}, {"q": "ruby"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])


class SortingStageTests(_CompilerCase):
    options = {"sorting": {"enabled": True, "allowed_fields": ["id", "title"]}}

    def test_leading_dash_sorts_descending(self):
        ids, _ = self._ids(self.options, {"sort": "-title"}, ordered=False)
        self.assertEqual(ids, [3, 5, 4, 2, 1])

    def test_plain_field_sorts_ascending(self):
        ids, _ = self._ids(self.options, {"sort": "title"}, ordered=False)
        self.assertEqual(ids, [1, 2, 4, 5, 3])

    def test_field_outside_allow_list_leaves_order_unchanged(self):
        ids, _ = self._ids(self.options, {"sort": "-secret"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])
        ids, _ = self._ids(self.options, {"sort": "-score"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_empty_allow_list_accepts_mapped_columns_only(self):
        options = {"sorting": {"enabled": True}}
        ids, _ = self._ids(options, {"sort": "-score"}, ordered=False)
        self.assertEqual(ids, [5, 4, 3, 2, 1])
        ids, _ = self._ids(options, {"sort": "-nope; drop table x"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_comma_separated_terms_apply_in_order(self):
        options = {"sorting": {"enabled": True, "allowed_fields": ["status", "score"]}}
        ids, _ = self._ids(options, {"sort": "status,-score"}, ordered=False)
        self.assertEqual(ids, [4, 2, 5, 3, 1])

    def test_repeated_term_keeps_first_direction(self):
        ids, _ = self._ids(self.options, {"sort": "-id,id"}, ordered=False)
        self.assertEqual(ids, [5, 4, 3, 2, 1])

    def test_unprefixed_term_uses_default_direction(self):
        options = {"sorting": {"enabled": True, "default_direction": "desc", "allowed_fields": ["score"]}}
        ids, _ = self._ids(options, {"sort": "score"}, ordered=False)
        self.assertEqual(ids, [5, 4, 3, 2, 1])
        ids, _ = self._ids(options, {"sort": "+score"}, ordered=False)
        self.assertEqual(ids, [1, 2, 3, 4, 5])

    def test_missing_or_non_string_sort_is_skipped(self):
        ids, _ = self._ids(self.options, {})
        self.assertEqual(ids, [1, 2, 3, 4, 5])
        ids, _ = self._ids(self.options, {"sort": {"title": "desc"}})
        self.assertEqual(ids, [1, 2, 3, 4, 5])


class PaginationStageTests(_CompilerCase):
    options = {"pagination": {"enabled": True, "default_per": 2, "max_per": 3}}

    def test_window_normalization(self):
        config = resolve_query_config(self.options)
        cases = [
            ({}, (1, 2)),
            ({"page": "0"}, (1, 2)),
            ({"page": "-4"}, (1, 2)),
            ({"page": "abc"}, (1, 2)),
            ({"page": "3", "size": "1"}, (3, 1)),
            ({"size": "0"}, (1, 2)),
            ({"size": "-5"}, (1, 2)),
            ({"size": "many"}, (1, 2)),
            ({"size": "50"}, (1, 3)),
            ({"page": "1_0"}, (1, 2)),
            ({"size": "1_0"}, (1, 2)),
            ({"page": " 2 "}, (2, 2)),
        ]
        for params, expected in cases:
            with self.subTest(params=params):
                self.assertEqual(pagination_window(config, params), expected)

    def test_huge_page_is_capped_to_a_store_safe_offset(self):
        config = resolve_query_config(self.options)
        page, per = pagination_window(config, {"page": "99999999999999999999"})
        self.assertEqual(per, 2)
        self.assertLessEqual((page - 1) * per, 2**63 - 1)
        ids, meta = self._ids(self.options, {"page": "99999999999999999999"})
        self.assertEqual(ids, [])
        self.assertEqual(meta, {"total": 5})

    def test_default_per_above_max_is_clamped(self):
        config = resolve_query_config({"pagination": {"enabled": True, "default_per": 20, "max_per": 5}})
        self.assertEqual(pagination_window(config, {}), (1, 5))

    def test_invalid_page_behaves_like_first_page(self):
        first, _ = self._ids(self.options, {"page": "1"})
        for raw in ("0", "abc", "-2"):
            with self.subTest(page=raw):
                ids, _ = self._ids(self.options, {"page": raw})
                self.assertEqual(ids, first)
        self.assertEqual(first, [1, 2])

    def test_second_page(self):
        ids, _ = self._ids(self.options, {"page": "2"})
        self.assertEqual(ids, [3, 4])

    def test_oversized_page_size_is_clamped(self):
        ids, _ = self._ids(self.options, {"size": "100"})
        self.assertEqual(ids, [1, 2, 3])

    def test_disabled_pagination_returns_everything(self):
        ids, _ = self._ids({}, {"page": "2", "size": "1"})
        self.assertEqual(ids, [1, 2, 3, 4, 5])


class MetadataStageTests(_CompilerCase):
    def test_total_counts_matches_not_page(self):
        for size in ("1", "2", "3"):
            with self.subTest(size=size):
                ids, meta = self._ids(FULL_OPTIONS, {"filter": {"status": "published"}, "size": size})
                self.assertEqual(meta, {"total": 3})
                self.assertEqual(len(ids), int(size))

    def test_total_reflects_search(self):
        _, meta = self._ids(FULL_OPTIONS, {"q": "ruby", "size": "1"})
        self.assertEqual(meta, {"total": 2})

    def test_meta_disabled_returns_no_metadata(self):
        _, meta = self._ids({"meta": {"enabled": False}}, {})
        self.assertIsNone(meta)

    def test_custom_total_key(self):
        _, meta = self._ids({"meta": {"total_key": "count"}}, {})
        self.assertEqual(meta, {"count": 5})


class CompileIdempotenceTests(_CompilerCase):
    def test_same_inputs_give_same_statement_and_metadata(self):
        config = resolve_query_config(FULL_OPTIONS)
        params = {
            "filter": {"status": "published,draft", "score": {"gte": "10"}},
            "q": "o",
            "sort": "-score",
            "page": "1",
            "size": "2",
        }
        first = compile_query(config, params, self.session.query(_Item))
        second = compile_query(config, params, self.session.query(_Item))
        first_sql = first.collection.statement.compile()
        second_sql = second.collection.statement.compile()
        self.assertEqual(str(first_sql), str(second_sql))
        self.assertEqual(first_sql.params, second_sql.params)
        self.assertEqual(first.metadata, second.metadata)
        self.assertEqual(
            [row.id for row in first.collection.all()],
            [row.id for row in second.collection.all()],
        )

    def test_params_are_not_mutated(self):
        config = resolve_query_config(FULL_OPTIONS)
        params = {"filter": {"status": {"in": "draft"}}, "sort": "-title"}
        compile_query(config, params, self.session.query(_Item))
        self.assertEqual(params, {"filter": {"status": {"in": "draft"}}, "sort": "-title"})

    def test_non_mapping_params_are_treated_as_empty(self):
        config = resolve_query_config(FULL_OPTIONS)
        result = compile_query(config, None, self.session.query(_Item).order_by(_Item.id))
        self.assertEqual([row.id for row in result.collection.all()], [1, 2])
        self.assertEqual(result.metadata, {"total": 5})


if __name__ == "__main__":
    unittest.main()
