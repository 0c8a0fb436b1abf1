from .generator import (
    Accept,
    BuildResult,
    ConflictError,
    ExtendedRule,
    FirstInfo,
    FollowInfo,
    Goto,
    ItemSet,
    ParserGenerator,
    ParseTable,
    Reduce,
    ReduceReduceConflictError,
    Shift,
    ShiftReduceConflictError,
    StateGraph,
    TableBuilder,
    extend_grammar,
    gen_closure,
    gen_sets,
)
from .grammar import (
    END,
    EPSILON,
    START,
    ActionCompileError,
    ActionPlaceholderError,
    DuplicateRuleError,
    DuplicateSymbolError,
    EmptyActionError,
    GeneratorError,
    Grammar,
    GrammarError,
    InconsistentReturnTypeError,
    MissingStartRuleError,
    ReservedSymbolError,
    Rule,
    StarterRule,
    Terminal,
    UndefinedSymbolError,
)
from .runtime import (
    GeneratedParser,
    InputReadError,
    Lexer,
    LexicalError,
    ParseError,
    Parser,
    ParseSyntaxError,
    Position,
    TokenValue,
)
