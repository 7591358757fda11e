import unittest

import contract_census as cc


VOCAB = cc.Vocabulary()
RULES = cc.ClauseRules(VOCAB)
CATEGORIES = cc.semantic_categories(RULES)

REQUIRES = frozenset({cc.ContractKind.REQUIRES})
ENSURES = frozenset({cc.ContractKind.ENSURES})


def labels(text: str, kinds=REQUIRES, categories=CATEGORIES, mutually_exclusive: bool = True):
    clause = cc.parse_expression(text)
    return cc.label_clause(categories, kinds, clause, VOCAB, mutually_exclusive=mutually_exclusive)


class CategoryAssignmentTests(unittest.TestCase):
    def assertCategory(self, text: str, expected: str, kinds=REQUIRES) -> None:
        with self.subTest(clause=text, kinds=sorted(kind.value for kind in kinds)):
            self.assertEqual(labels(text, kinds), frozenset({expected}))

    def assertUncategorized(self, text: str, kinds=REQUIRES) -> None:
        with self.subTest(clause=text):
            self.assertEqual(labels(text, kinds), frozenset())

    def test_catalogue_order(self) -> None:
        self.assertEqual(
            [category.name for category in CATEGORIES],
            [
                "Nullness",
                "Null/Blank",
                "Non-Empty",
                "Lower/Upper Bound",
                "Indicator",
                "Frame Condition",
                "Return Value",
                "Bounds Check",
                "Constant",
                "Implication",
                "Getter/Setter",
                "State Update",
                "Membership",
                "Expr. Comparison",
            ],
        )

    def test_nullness(self) -> None:
        self.assertCategory("x != null", cc.NULLNESS)
        self.assertCategory("null != x", cc.NULLNESS)
        self.assertCategory("EnumerableContract.ElementsNotNull(xs)", cc.NULLNESS)
        self.assertCategory("cce.NonNullElements(xs)", cc.NULLNESS)
        self.assertCategory("!ReferenceEquals(x, null)", cc.NULLNESS)
        self.assertCategory("!object.ReferenceEquals(null, x)", cc.NULLNESS)

    def test_null_or_blank(self) -> None:
        self.assertCategory("!string.IsNullOrEmpty(name)", cc.NULL_OR_BLANK)
        self.assertCategory("!String.IsNullOrWhiteSpace(name)", cc.NULL_OR_BLANK)
        self.assertCategory("string.IsNullOrWhiteSpace(name) == false", cc.NULL_OR_BLANK)
        self.assertCategory('name != ""', cc.NULL_OR_BLANK)

    def test_non_empty(self) -> None:
        self.assertCategory("xs.Any()", cc.NON_EMPTY)
        self.assertCategory("xs.Count > 0", cc.NON_EMPTY)
        self.assertCategory("0 < xs.Count", cc.NON_EMPTY)
        self.assertCategory("xs.Length >= 1", cc.NON_EMPTY)

    def test_any_with_predicate_is_not_non_empty(self) -> None:
        self.assertNotIn(cc.NON_EMPTY, labels("xs.Any(x => x > 0)"))

    def test_lower_upper_bound(self) -> None:
        self.assertCategory("x > 5", cc.LOWER_OR_UPPER_BOUND)
        self.assertCategory("count <= 100", cc.LOWER_OR_UPPER_BOUND)
        self.assertCategory("Contract.Result<int>() >= 0", cc.LOWER_OR_UPPER_BOUND, ENSURES)

    def test_size_upper_bound_is_uncategorized(self) -> None:
        self.assertUncategorized("xs.Count < 10")

    def test_indicator(self) -> None:
        self.assertCategory("isReady", cc.INDICATOR)
        self.assertCategory("!isReady", cc.INDICATOR)
        self.assertCategory("this.IsOpen", cc.INDICATOR)
        self.assertCategory("flag == true", cc.INDICATOR)
        self.assertCategory("false != flag", cc.INDICATOR)
        self.assertCategory("IsInitialized()", cc.INDICATOR)
        self.assertCategory("Helpers.IsValid(x)", cc.INDICATOR)

    def test_instance_predicate_calls_are_uncategorized(self) -> None:
        self.assertUncategorized("x.IsValid(y)")
        self.assertUncategorized("x.CustomFunctionCall(y)")

    def test_frame_condition(self) -> None:
        self.assertCategory("x == Contract.OldValue(x)", cc.FRAME_CONDITION, ENSURES)
        self.assertCategory("Contract.OldValue(this.Count) == this.Count", cc.FRAME_CONDITION, ENSURES)
        self.assertCategory("x == Contract.OldValue<int>(x)", cc.FRAME_CONDITION, ENSURES)

    def test_state_update(self) -> None:
        self.assertCategory("Count == Contract.OldValue(Count) + 1", cc.STATE_UPDATE, ENSURES)
        self.assertCategory("Count > Contract.OldValue(Count)", cc.STATE_UPDATE, ENSURES)

    def test_return_value(self) -> None:
        self.assertCategory("Contract.Result<bool>()", cc.RETURN_VALUE, ENSURES)
        self.assertCategory("Contract.Result<bool>() == IsEmpty(x)", cc.RETURN_VALUE, ENSURES)

    def test_getter_setter(self) -> None:
        self.assertCategory("Contract.Result<int>() == count", cc.GETTER_OR_SETTER, ENSURES)
        self.assertCategory("this.state == State.Open", cc.GETTER_OR_SETTER, ENSURES)
        self.assertCategory("ReferenceEquals(Contract.Result<object>(), this)", cc.GETTER_OR_SETTER, ENSURES)
        self.assertCategory("Contract.Result<string>().Equals(name)", cc.GETTER_OR_SETTER, ENSURES)

    def test_getter_setter_needs_ensures(self) -> None:
        self.assertCategory("this.state == State.Open", cc.EXPR_COMPARISON, REQUIRES)

    def test_bounds_check(self) -> None:
        self.assertCategory("i < xs.Count", cc.BOUNDS_CHECK)
        self.assertCategory("index < this.Length", cc.BOUNDS_CHECK)
        self.assertCategory("i < a.GetLength(0)", cc.BOUNDS_CHECK)

    def test_constant(self) -> None:
        self.assertCategory("mode == 3", cc.CONSTANT)
        self.assertCategory("this.Kind == 'a'", cc.CONSTANT)

    def test_implication(self) -> None:
        self.assertCategory("x == null || y != null", cc.IMPLICATION)
        self.assertCategory("flag ? x > 0 : true", cc.IMPLICATION)

    def test_membership(self) -> None:
        self.assertCategory("set.Contains(item)", cc.MEMBERSHIP)
        self.assertCategory("!map.ContainsKey(k)", cc.MEMBERSHIP)
        self.assertCategory("graph.ContainsVertex(v)", cc.MEMBERSHIP)

    def test_expr_comparison(self) -> None:
        self.assertCategory("a.Equals(b)", cc.EXPR_COMPARISON)
        self.assertCategory("left < right", cc.EXPR_COMPARISON)
        self.assertCategory("string.Compare(a, b) < 0", cc.EXPR_COMPARISON)
        self.assertCategory("!a.Equals(b)", cc.EXPR_COMPARISON)
        self.assertCategory("x is Foo", cc.EXPR_COMPARISON)
        self.assertCategory("handler is System.IDisposable", cc.EXPR_COMPARISON)

    def test_quantified_clause_uses_body(self) -> None:
        self.assertEqual(labels("Contract.ForAll(x, y => y != null)"), frozenset({cc.NULLNESS}))

    def test_method_group_quantifier_is_uncategorized(self) -> None:
        self.assertUncategorized("Contract.ForAll(xs, IsValid)")

    def test_unsupported_callee_raises(self) -> None:
        with self.assertRaises(cc.ContractShapeError):
            labels("!handlers[0](x)")


class CategoryExclusivityTests(unittest.TestCase):
    def test_first_match_wins(self) -> None:
        self.assertEqual(labels("flag == true"), frozenset({cc.INDICATOR}))

    def test_non_exclusive_collects_every_match(self) -> None:
        self.assertEqual(
            labels("flag == true", mutually_exclusive=False),
            frozenset({cc.INDICATOR, cc.CONSTANT}),
        )

    def test_order_decides_the_label(self) -> None:
        by_name = {category.name: category for category in CATEGORIES}
        swapped = [
            by_name[cc.CONSTANT] if category.name == cc.INDICATOR
            else by_name[cc.INDICATOR] if category.name == cc.CONSTANT
            else category
            for category in CATEGORIES
        ]
        self.assertEqual(labels("flag == true", categories=swapped), frozenset({cc.CONSTANT}))

    def test_every_clause_has_at_most_one_label(self) -> None:
        for text in ("x != null", "xs.Count > 0", "flag == true", "a.Equals(b)", "xs.Count < 10"):
            for kinds in (REQUIRES, ENSURES, cc.ALL_KINDS):
                with self.subTest(clause=text):
                    self.assertLessEqual(len(labels(text, kinds)), 1)

    def test_labels_are_stable_across_repeated_runs(self) -> None:
        texts = (
            "x != null",
            "Contract.ForAll(x, y => y != null)",
            "x.CustomFunctionCall(y)",
            "Count == Contract.OldValue(Count) + 1",
        )
        for text in texts:
            clause = cc.parse_expression(text)
            first = cc.label_clause(CATEGORIES, cc.ALL_KINDS, clause, VOCAB)
            with self.subTest(clause=text):
                for _ in range(3):
                    self.assertEqual(cc.label_clause(CATEGORIES, cc.ALL_KINDS, clause, VOCAB), first)
                    self.assertEqual(labels(text, cc.ALL_KINDS), first)

    def test_separate_collectors_agree(self) -> None:
        source = (
            "class C { void M() {"
            " Contract.Requires(x != null && Contract.ForAll(xs, a => Contract.ForAll(a, b => b != null)));"
            " Contract.Ensures(Contract.Result<int>() == count);"
            " Contract.Invariant(x.CustomFunctionCall(y));"
            " } }"
        )
        unit = cc.parse_source(source)
        runs = []
        for _ in range(2):
            collector = cc.ContractCollector(cc.ALL_KINDS, cc.semantic_categories(), VOCAB)
            collector.visit(unit)
            runs.append(collector.clauses)
        self.assertEqual(len(runs[0]), 4)
        self.assertEqual(runs[0], runs[1])
        self.assertEqual(runs[0], cc.classify_source(source))

    def test_custom_category(self) -> None:
        custom = cc.Category.from_expression_rule("Anything", lambda expr: True)
        self.assertEqual(labels("x.IsValid(y)", categories=[custom]), frozenset({"Anything"}))


class RulePredicateTests(unittest.TestCase):
    def test_conjoined_bounds_check(self) -> None:
        # Conjunctions never reach the rules through extraction.
        self.assertTrue(RULES.is_bounds_check(cc.parse_expression("i >= 0 && i < xs.Count")))
        self.assertFalse(RULES.is_bounds_check(cc.parse_expression("i > 0 && i < xs.Count")))

    def test_greater_than_check(self) -> None:
        self.assertTrue(RULES.is_greater_than_check(cc.parse_expression("n > 0"), 0, True))
        self.assertTrue(RULES.is_greater_than_check(cc.parse_expression("0 < n"), 0, True))
        self.assertTrue(RULES.is_greater_than_check(cc.parse_expression("n >= 1"), 1, False))
        self.assertFalse(RULES.is_greater_than_check(cc.parse_expression("n >= 0"), 0, True))

    def test_old_value_uses_structural_equality(self) -> None:
        old = cc.parse_expression("Contract.OldValue(this . Count)")
        self.assertTrue(RULES.is_old_value(old, cc.parse_expression("this.Count")))
        self.assertFalse(RULES.is_old_value(old, cc.parse_expression("other.Count")))

    def test_collection_size_expressions(self) -> None:
        self.assertTrue(RULES.is_collection_size_expr(cc.parse_expression("g.VertexCount")))
        self.assertFalse(RULES.is_collection_size_expr(cc.parse_expression("Count")))

    def test_custom_vocabulary(self) -> None:
        rules = cc.ClauseRules(cc.Vocabulary(membership_methods=("Has",)))
        self.assertTrue(rules.is_membership_check(cc.parse_expression("bag.Has(x)")))
        self.assertFalse(rules.is_membership_check(cc.parse_expression("bag.Contains(x)")))


if __name__ == "__main__":
    unittest.main()
