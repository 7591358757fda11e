import unittest

import contract_census as cc


class ExpressionConversionTests(unittest.TestCase):
    def test_conjunction_of_comparisons(self) -> None:
        expr = cc.parse_expression("x != null && y > 0")
        self.assertIsInstance(expr, cc.BinaryExpr)
        self.assertIs(expr.op, cc.BinaryOp.LOGICAL_AND)
        self.assertEqual(expr.left, cc.BinaryExpr(cc.BinaryOp.NOT_EQUALS, cc.Identifier("x"), cc.Literal(cc.LiteralKind.NULL, "null")))
        self.assertIs(expr.right.op, cc.BinaryOp.GREATER)
        self.assertEqual(expr.text, "x != null && y > 0")

    def test_member_access_and_invocation(self) -> None:
        expr = cc.parse_expression("foo.Bar(x, 1)")
        self.assertIsInstance(expr, cc.Invocation)
        self.assertEqual(expr.callee, cc.MemberAccess(cc.Identifier("foo"), "Bar"))
        self.assertEqual(len(expr.arguments), 2)
        self.assertEqual(expr.arguments[1].kind, cc.LiteralKind.NUMERIC)
        self.assertEqual(cc.simple_method_name(expr), "Bar")

    def test_generic_result_placeholder_keeps_type_argument(self) -> None:
        expr = cc.parse_expression("Contract.Result<int>()")
        self.assertIsInstance(expr, cc.Invocation)
        self.assertEqual(expr.callee.text, "Contract.Result<int>")
        self.assertEqual(expr.arguments, ())

    def test_equivalence_ignores_formatting(self) -> None:
        self.assertEqual(cc.parse_expression("foo . Bar( x )"), cc.parse_expression("foo.Bar(x)"))
        self.assertEqual(cc.parse_expression("xs [ 0 ]"), cc.parse_expression("xs[0]"))
        self.assertNotEqual(cc.parse_expression("a.Count"), cc.parse_expression("b.Count"))

    def test_unsupported_syntax_is_opaque(self) -> None:
        expr = cc.parse_expression("xs[ 0 ]")
        self.assertIsInstance(expr, cc.Opaque)
        self.assertEqual(expr.normalized, "xs[0]")
        self.assertIn(cc.Identifier("xs"), list(cc.iter_descendants(expr)))

    def test_literal_kinds(self) -> None:
        cases = {
            '"abc"': cc.LiteralKind.STRING,
            "'c'": cc.LiteralKind.CHARACTER,
            "1.5": cc.LiteralKind.NUMERIC,
            "42": cc.LiteralKind.NUMERIC,
            "true": cc.LiteralKind.TRUE,
            "false": cc.LiteralKind.FALSE,
            "null": cc.LiteralKind.NULL,
        }
        for text, kind in cases.items():
            with self.subTest(text=text):
                expr = cc.parse_expression(text)
                self.assertIsInstance(expr, cc.Literal)
                self.assertIs(expr.kind, kind)

    def test_prefix_and_conditional(self) -> None:
        negated = cc.parse_expression("!isReady")
        self.assertEqual(negated, cc.PrefixUnary(cc.UnaryOp.LOGICAL_NOT, cc.Identifier("isReady")))

        conditional = cc.parse_expression("flag ? a : b")
        self.assertIsInstance(conditional, cc.Conditional)
        self.assertEqual(conditional.when_false, cc.Identifier("b"))

    def test_lambda_bodies(self) -> None:
        expression_bodied = cc.parse_expression("x => x > 0")
        self.assertIsInstance(expression_bodied, cc.Lambda)
        self.assertEqual(expression_bodied.parameters, ("x",))
        self.assertIsInstance(expression_bodied.body, cc.BinaryExpr)

        block_bodied = cc.parse_expression("x => { return x > 0; }")
        self.assertIsInstance(block_bodied, cc.Lambda)
        self.assertIsNone(block_bodied.body)

    def test_type_test_is_binary(self) -> None:
        expr = cc.parse_expression("x is Foo")
        self.assertEqual(expr, cc.BinaryExpr(cc.BinaryOp.IS, cc.Identifier("x"), cc.Identifier("Foo")))
        self.assertEqual(expr.text, "x is Foo")

    def test_this_reference(self) -> None:
        expr = cc.parse_expression("this.IsOpen")
        self.assertIsInstance(expr, cc.MemberAccess)
        self.assertIsInstance(expr.owner, cc.ThisReference)

    def test_strip_parentheses(self) -> None:
        expr = cc.parse_expression("((x))")
        self.assertIsInstance(expr, cc.Parenthesized)
        self.assertEqual(cc.strip_parentheses(expr), cc.Identifier("x"))

    def test_invalid_expression_raises(self) -> None:
        with self.assertRaises(cc.SourceParseError):
            cc.parse_expression("x +")


class ExpressionTraversalTests(unittest.TestCase):
    def test_descendants_exclude_root(self) -> None:
        expr = cc.parse_expression("f(g(x)) + 1")
        found = list(cc.iter_descendants(expr))
        self.assertNotIn(expr, found)
        self.assertIn(cc.Identifier("x"), found)
        self.assertIn(cc.parse_expression("g(x)"), found)

    def test_outermost_invocations_skip_nested_calls(self) -> None:
        expr = cc.parse_expression("f(g(x)) && h()")
        texts = [call.text for call in cc.iter_outermost_invocations(expr)]
        self.assertEqual(texts, ["f(g(x))", "h()"])

    def test_simple_method_name_rejects_other_callees(self) -> None:
        expr = cc.parse_expression("handlers[0](x)")
        self.assertIsInstance(expr, cc.Invocation)
        with self.assertRaises(cc.ContractShapeError):
            cc.simple_method_name(expr)

    def test_missing_argument_raises(self) -> None:
        expr = cc.parse_expression("Contract.Requires()")
        with self.assertRaises(cc.ContractShapeError):
            cc.call_argument(expr, 0)


class SourceParsingTests(unittest.TestCase):
    def test_outermost_invocations_in_document_order(self) -> None:
        source = """
class C {
    void M(object x, int n) {
        Contract.Requires(x != null);
        Run(() => { Contract.Requires(n > 0); });
        Contract.Ensures(n >= 0);
    }
}
"""
        unit = cc.parse_source(source, "C.cs")
        self.assertEqual(unit.path, "C.cs")
        self.assertFalse(unit.has_syntax_errors)
        texts = [call.callee.text for call in unit.invocations]
        self.assertEqual(texts, ["Contract.Requires", "Run", "Contract.Ensures"])

    def test_byte_order_mark_is_dropped(self) -> None:
        source = "\ufeffclass C { void M() { Contract.Requires(ok); } }".encode("utf-8")
        unit = cc.parse_source(source)
        self.assertEqual(len(unit.invocations), 1)

    def test_syntax_errors_tolerated_unless_strict(self) -> None:
        source = "class C { void M() { Contract.Requires(x != null); int = ; } }"
        unit = cc.parse_source(source)
        self.assertTrue(unit.has_syntax_errors)
        with self.assertRaises(cc.SourceParseError):
            cc.parse_source(source, strict=True)

    def test_unreadable_file(self) -> None:
        with self.assertRaises(cc.SourceParseError):
            cc.parse_file("/nonexistent/path/Missing.cs")


if __name__ == "__main__":
    unittest.main()
