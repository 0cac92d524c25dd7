"""
Sandboxed Evaluation Oracle
===========================

Runs a code fragment in a fresh V8 isolate (``py_mini_racer.MiniRacer``)
and returns its value as a typed result:

    Ok(node, value)     the fragment evaluated; ``node`` re-creates the value
    MissingName(name)   a ``ReferenceError: <name> is not defined`` was thrown
    Fatal(error)        anything else: another exception or a timeout

The prelude (a dependency closure) and the target expression are executed
through indirect ``eval`` inside a JS harness that classifies errors and
marshals the value to JSON, so no V8 object ever crosses into Python.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from py_mini_racer import JSEvalException, JSTimeoutException, MiniRacer

from deconfuser.analysis.closure import DependencyClosure
from deconfuser.compiler.codegen import generate
from deconfuser.compiler.jsvalues import NOT_CONSTANT, UNDEFINED, normalize_number
from deconfuser.compiler.nodes import Node, literal, value_to_node
from deconfuser.compiler.parser import parse_expression
from deconfuser.errors import OracleFailure, ParseFailure, UndefinedReference

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 1000

_HARNESS = r'''
(function () {
  var stringify = JSON.stringify;
  var functionSource = Function.prototype.toString;
  var tagOf = Object.prototype.toString;
  var protoOf = Object.getPrototypeOf;
  var isArray = Array.isArray;
  var ownNames = Object.getOwnPropertyNames;
  var ownSymbols = Object.getOwnPropertySymbols;
  var describe = Object.getOwnPropertyDescriptor;
  function marshal(value, depth) {
    if (value === null) return {kind: "null"};
    var type = typeof value;
    if (type === "undefined") return {kind: "undefined"};
    if (type === "string" || type === "boolean") return {kind: type, value: value};
    if (type === "number") {
      if (value !== value) return {kind: "number", special: "NaN"};
      if (value === Infinity) return {kind: "number", special: "Infinity"};
      if (value === -Infinity) return {kind: "number", special: "-Infinity"};
      if (value === 0 && 1 / value < 0) return {kind: "number", special: "-0"};
      return {kind: "number", value: value};
    }
    if (type === "function") return {kind: "source", source: functionSource.call(value)};
    if (tagOf.call(value) === "[object RegExp]") return {kind: "source", source: String(value)};
    if (depth > 16) return {kind: "opaque"};
    if (isArray(value)) {
      var items = [];
      for (var i = 0; i < value.length; i++) items.push(marshal(value[i], depth + 1));
      return {kind: "array", items: items};
    }
    var proto = protoOf(value);
    if (type === "object" && proto === Object.prototype) {
      if (ownSymbols(value).length) return {kind: "opaque"};
      var keys = ownNames(value), entries = [];
      for (var j = 0; j < keys.length; j++) {
        var slot = describe(value, keys[j]);
        if (keys[j] === "__proto__" || !slot.enumerable || !("value" in slot)
            || typeof slot.value === "function") return {kind: "opaque"};
        var entry = marshal(slot.value, depth + 1);
        if (entry.kind === "opaque") return entry;
        entries.push([keys[j], entry]);
      }
      return {kind: "object", entries: entries};
    }
    return {kind: "opaque"};
  }
  var result;
  try {
    (0, eval)(%(prelude)s);
    result = {kind: "ok", value: marshal((0, eval)("(" + %(target)s + "\n)"), 0)};
  } catch (error) {
    var message;
    try { message = String(error && error.message !== undefined ? error.message : error); }
    catch (e) { message = "unprintable exception"; }
    var missing = error instanceof ReferenceError ? /^(.+) is not defined$/.exec(message) : null;
    result = missing ? {kind: "missing", name: missing[1]} : {kind: "error", message: message};
  }
  return stringify(result);
})()
'''


# ═══════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Ok:
    """
    Successful evaluation.

    ``value`` holds primitives as Python values (``UNDEFINED`` for
    undefined) and ``NOT_CONSTANT`` for objects; ``node`` is the expression
    re-creating the value, or ``None`` when the value has no source form.
    """
    node: Optional[Node]
    value: Any = NOT_CONSTANT

    @property
    def is_primitive(self) -> bool:
        return self.value is not NOT_CONSTANT


@dataclass(frozen=True)
class MissingName:
    name: str


@dataclass(frozen=True)
class Fatal:
    error: str


EvalResult = Union[Ok, MissingName, Fatal]


def _unmarshal(data: dict):
    kind = data['kind']
    if kind == 'null':
        return None, value_to_node(None)
    if kind == 'undefined':
        return UNDEFINED, value_to_node(UNDEFINED)
    if kind in ('string', 'boolean'):
        return data['value'], value_to_node(data['value'])
    if kind == 'number':
        special = data.get('special')
        if special is not None:
            value = {'NaN': float('nan'), 'Infinity': float('inf'),
                     '-Infinity': float('-inf'), '-0': -0.0}[special]
        else:
            value = normalize_number(float(data['value'])) \
                if isinstance(data['value'], float) else data['value']
        return value, value_to_node(value)
    if kind == 'array':
        elements = [_unmarshal(item)[1] for item in data['items']]
        if any(element is None for element in elements):
            return NOT_CONSTANT, None
        return NOT_CONSTANT, Node('ArrayExpression', elements=elements)
    if kind == 'object':
        properties = []
        for key, item in data['entries']:
            node = _unmarshal(item)[1]
            if node is None:
                return NOT_CONSTANT, None
            properties.append(Node('Property', key=literal(key), value=node, kind='init',
                                   computed=False, method=False, shorthand=False))
        return NOT_CONSTANT, Node('ObjectExpression', properties=properties)
    if kind == 'source':
        try:
            return NOT_CONSTANT, parse_expression(data['source'])
        except ParseFailure:
            logger.debug('Evaluated value does not re-parse: %.60r', data['source'])
            return NOT_CONSTANT, None
    return NOT_CONSTANT, None


# ═══════════════════════════════════════════════════════════════════════════
# Oracle
# ═══════════════════════════════════════════════════════════════════════════

class Oracle:
    """
    Evaluates fragments in isolated V8 contexts.

    Usage:
        >>> oracle = Oracle(timeout_ms=1000)
        >>> oracle.evaluate(closure, call_node)
        Ok(node=Literal('b'), value='b')
    """

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.timeout_ms = timeout_ms
        self.stats = {'evaluations': 0, 'ok': 0, 'missing': 0, 'fatal': 0, 'timeouts': 0}

    @staticmethod
    def _prelude(closure) -> str:
        if closure is None:
            return ''
        if isinstance(closure, str):
            return closure
        if isinstance(closure, DependencyClosure):
            return closure.source()
        return '\n'.join(generate(node) for node in closure)

    def harness(self, closure: Union[DependencyClosure, Iterable[Node], str, None],
                target: Union[Node, str]) -> str:
        """The JS program run for one evaluation."""
        target_source = target if isinstance(target, str) else generate(target)
        return _HARNESS % {
            'prelude': json.dumps(self._prelude(closure)),
            'target': json.dumps(target_source),
        }

    def evaluate(
        self,
        closure: Union[DependencyClosure, Iterable[Node], str, None],
        target: Union[Node, str],
        site: Optional[Node] = None,
    ) -> EvalResult:
        """
        Evaluate ``target`` after running ``closure`` in a fresh context.

        Args:
            closure: Declarations the target depends on (in any accepted form)
            target: Expression node or expression source
            site: Node whose source offset identifies the site in logs
        """
        code = self.harness(closure, target)
        offset = (site or (target if isinstance(target, Node) else None))
        offset = offset.start if offset is not None else '?'
        self.stats['evaluations'] += 1

        context = MiniRacer()
        try:
            raw = context.eval(code, timeout=self.timeout_ms)
        except JSTimeoutException:
            self.stats['timeouts'] += 1
            self.stats['fatal'] += 1
            logger.warning('Evaluation at offset %s timed out after %d ms', offset, self.timeout_ms)
            return Fatal(f'timed out after {self.timeout_ms} ms')
        except JSEvalException as e:
            self.stats['fatal'] += 1
            logger.warning('Evaluation at offset %s failed in the sandbox: %s', offset, e)
            return Fatal(str(e))
        finally:
            context.close()

        data = json.loads(raw)
        if data['kind'] == 'missing':
            self.stats['missing'] += 1
            logger.debug('Evaluation at offset %s: %s is not defined', offset, data['name'])
            return MissingName(data['name'])
        if data['kind'] == 'error':
            self.stats['fatal'] += 1
            logger.warning('Evaluation at offset %s threw: %s', offset, data['message'])
            return Fatal(data['message'])

        value, node = _unmarshal(data['value'])
        self.stats['ok'] += 1
        return Ok(node, value)

    def evaluate_or_raise(self, closure, target: Union[Node, str],
                          site: Optional[Node] = None) -> Ok:
        """
        ``evaluate`` mapped onto the exception taxonomy.

        Raises:
            UndefinedReference: a free name of the target was not supplied
            OracleFailure: the evaluation threw or timed out
        """
        result = self.evaluate(closure, target, site)
        if isinstance(result, Ok):
            return result
        source = target if isinstance(target, str) else generate(target)
        if isinstance(result, MissingName):
            raise UndefinedReference(result.name, source)
        raise OracleFailure(result.error, source)
