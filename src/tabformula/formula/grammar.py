"""Lark grammar definition for tabformula formulas.

Precedence, lowest to highest:
- Comparison: =, !=, <>, <, >, <=, >=
- Additive and concatenation: +, -, &
- Multiplicative: *, /, %
- Power: ^ (right-associative)
- Unary: -, +, !
- Primary: numbers, strings, {Field Name}, FUNCTION(args), TRUE/FALSE,
  parenthesised expressions

Logical connectives are functions (AND, OR, NOT, IF), not operators.
"""

# Lark grammar for formula parsing (LALR(1), basic lexer)
FORMULA_GRAMMAR = r"""
    ?start: expression

    ?expression: comparison

    ?comparison: additive
        | comparison "=" additive -> eq
        | comparison "!=" additive -> ne
        | comparison "<>" additive -> ne
        | comparison "<" additive -> lt
        | comparison ">" additive -> gt
        | comparison "<=" additive -> le
        | comparison ">=" additive -> ge

    ?additive: multiplicative
        | additive "+" multiplicative -> add
        | additive "-" multiplicative -> sub
        | additive "&" multiplicative -> concat

    ?multiplicative: power
        | multiplicative "*" power -> mul
        | multiplicative "/" power -> div
        | multiplicative "%" power -> mod

    ?power: unary
        | unary "^" power -> pow

    ?unary: primary
        | "-" unary -> neg
        | "+" unary -> pos
        | "!" unary -> not_

    ?primary: NUMBER -> number
        | STRING -> string
        | FIELD_REF -> field_ref
        | NAME "(" [arguments] ")" -> call
        | NAME -> name
        | "(" expression ")"

    arguments: expression ("," expression)*

    // {Field Name}; braces cannot nest
    FIELD_REF: /\{[^{}]*\}/

    // Function names and the TRUE/FALSE literals (resolved by the transformer)
    NAME: /[A-Za-z_][A-Za-z0-9_]*/

    // Single or double quotes, backslash escapes one character
    STRING: /"(?:[^"\\]|\\.)*"/s | /'(?:[^'\\]|\\.)*'/s

    // Negative sign is handled by the unary operator
    NUMBER: /(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?/

    %import common.WS
    %ignore WS
"""
