import pytest

from taiko.taiko_printer import Printer
from taiko.taiko_datatypes import TaikoClass, TaikoObject, Method, Block, Frame
from taiko.taiko_nodes import Seq


@pytest.fixture
def printer():
    return Printer()


@pytest.fixture
def object_class():
    return TaikoClass('Object', None, builtin=True)


@pytest.mark.parametrize("value, expected", [
    (1, "1"),
    (-3, "-3"),
    (True, "true"),
    (False, "false"),
    (None, "nil"),
    ("hi", '"hi"'),
    ('say "x"\n', '"say \\"x\\"\\n"'),
    ([1, "a", None, [True]], '[1, "a", nil, [true]]'),
    ([], "[]"),
])
def test_pformat_builtin_values(printer, value, expected):
    assert printer.pformat(value) == expected


@pytest.mark.parametrize("value, expected", [
    (None, ""),
    ("raw", "raw"),
    (7, "7"),
    (False, "false"),
    ([1, "a"], '[1, "a"]'),
])
def test_to_s_builtin_values(printer, value, expected):
    assert printer.to_s(value) == expected


def test_self_referencing_array_is_elided(printer):
    items = [1]
    items.append(items)
    assert printer.pformat(items) == "[1, [...]]"


def test_classes_print_their_name(printer, object_class):
    foo = TaikoClass('Foo', object_class)
    assert printer.pformat(foo) == "Foo"
    assert printer.to_s(foo) == "Foo"


def test_objects_print_class_and_ivars(printer, object_class):
    car = TaikoClass('Car', object_class)
    obj = TaikoObject(car)
    assert printer.pformat(obj) == "#<Car>"
    obj.set_ivar('name', 'Legacy')
    obj.set_ivar('year', 2001)
    assert printer.pformat(obj) == '#<Car @name="Legacy", @year=2001>'
    # puts shows only the class
    assert printer.to_s(obj) == "#<Car>"


def test_labelled_object_prints_label(printer, object_class):
    main = TaikoObject(object_class, label='main')
    assert printer.pformat(main) == "main"
    assert printer.to_s(main) == "main"


def test_cyclic_object_is_elided(printer, object_class):
    node = TaikoObject(TaikoClass('Node', object_class))
    node.set_ivar('me', node)
    assert printer.pformat(node) == "#<Node @me=#<Node>>"


def test_callables(printer, object_class):
    vec = TaikoClass('Vec', object_class)
    m = Method('len', ['x'], Seq([]), Frame())
    vec.add_method(m)
    assert printer.pformat(m) == "#<Method Vec#len>"
    assert printer.pformat(Block([], Seq([]), Frame())) == "#<Proc>"
