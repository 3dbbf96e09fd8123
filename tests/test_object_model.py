import pytest
from taiko import ScriptRunner
from taiko.taiko_datatypes import TaikoObject, TaikoClass


async def run_taiko(src: str):
    runner = ScriptRunner(load_core=True)
    return await runner.handle_script(src)

def assert_ok(res, expected=None):
    assert res.status == 'success', f"expected success, got {res.status}: {res.error_message}"
    if expected is not None:
        assert res.value == expected

def assert_error(res, contains: str | None = None):
    assert res.status == 'error', f"expected error, got {res.status} with value {res.value!r}"
    if contains:
        msg = res.error_message or ""
        assert contains in msg, f"error message did not contain {contains!r}: {msg!r}"


VEC = """
class Vec
  @xxx=100
  def set_xxx(x)
    @xxx = x
  end
  def get_xxx
    @xxx
  end
end
"""

# Instances and instance variables

@pytest.mark.asyncio
async def test_new_returns_distinct_instances():
    res = await run_taiko("class Foo\nend\na = Foo.new\nb = Foo.new\na == b")
    assert_ok(res, False)

@pytest.mark.asyncio
async def test_instance_variables_are_per_instance():
    res = await run_taiko(VEC + """
foo1 = Vec.new
foo2 = Vec.new
foo1.set_xxx(777)
foo2.set_xxx(999)
[foo1.get_xxx, foo2.get_xxx]
""")
    assert_ok(res, [777, 999])

@pytest.mark.asyncio
async def test_class_body_ivar_is_separate_from_instance_ivar():
    res = await run_taiko(VEC + "Vec.new.get_xxx")
    assert_ok(res)
    assert res.value is None

@pytest.mark.asyncio
async def test_unset_instance_variable_reads_nil():
    res = await run_taiko("class P\n  def x\n    @nothing\n  end\nend\nP.new.x")
    assert_ok(res)
    assert res.value is None

@pytest.mark.asyncio
async def test_instance_variables_lists_names_in_order():
    res = await run_taiko("""
class Car
  def setup
    @name = 'a'
    @year = 1
  end
end
c = Car.new
c.setup
c.instance_variables
""")
    assert_ok(res, ["@name", "@year"])

@pytest.mark.asyncio
async def test_class_instance_variables_listed_on_class():
    res = await run_taiko(VEC + "Vec.instance_variables")
    assert_ok(res, ["@xxx"])


# Class variables

CAR = """
class Car
  @@class_var = 2
  def set_class_var(i)
    @@class_var = i
  end
  def get_class_var
    @@class_var
  end
end
"""

@pytest.mark.asyncio
async def test_class_variable_shared_between_two_instances():
    res = await run_taiko(CAR + """
car1 = Car.new
car2 = Car.new
car1.set_class_var(22222)
car2.get_class_var
""")
    assert_ok(res, 22222)

@pytest.mark.asyncio
async def test_class_variable_initialized_in_class_body():
    res = await run_taiko(CAR + "Car.new.get_class_var")
    assert_ok(res, 2)

@pytest.mark.asyncio
async def test_unset_class_variable_is_an_error():
    res = await run_taiko("class Q\n  def get\n    @@missing\n  end\nend\nQ.new.get")
    assert_error(res, "uninitialized class variable @@missing in Q")

@pytest.mark.asyncio
async def test_subclass_shares_class_variable_set_on_ancestor():
    res = await run_taiko(CAR + """
class SportsCar < Car
end
s = SportsCar.new
s.set_class_var(7)
[Car.new.get_class_var, s.get_class_var]
""")
    assert_ok(res, [7, 7])

@pytest.mark.asyncio
async def test_class_variable_first_set_on_subclass_stays_there():
    runner = ScriptRunner()
    res = await runner.handle_script("""
class Base
  def set(v)
    @@only = v
  end
end
class Child < Base
end
Child.new.set(1)
""")
    assert_ok(res, 1)
    ev = runner.evaluator
    # The writer's class is Child (the runtime class of self), so Child owns it.
    assert ev.constants['Child'].cvars == {'only': 1}
    assert ev.constants['Base'].cvars == {}


# Inheritance and dispatch

@pytest.mark.asyncio
async def test_subclass_inherits_methods():
    res = await run_taiko("""
class A
  def len(x, y)
    def sq(x)
      x*x
    end
    sq(x)+sq(y)
  end
end
class B < A
end
B.new.len(3, 4)
""")
    assert_ok(res, 25)

@pytest.mark.asyncio
async def test_subclass_override_and_superclass_reflection():
    res = await run_taiko("""
class Animal
  def speak
    'generic'
  end
end
class Dog < Animal
  def speak
    'woof'
  end
end
[Dog.new.speak, Animal.new.speak, Dog.superclass.name, Animal.superclass.name]
""")
    assert_ok(res, ['woof', 'generic', 'Animal', 'Object'])

@pytest.mark.asyncio
async def test_inherited_instances_keep_separate_ivars():
    res = await run_taiko(VEC + """
class Sub < Vec
end
a = Vec.new
b = Sub.new
a.set_xxx(777)
b.set_xxx(999)
[a.get_xxx, b.get_xxx]
""")
    assert_ok(res, [777, 999])

@pytest.mark.asyncio
async def test_nested_def_installs_into_runtime_class_of_self():
    runner = ScriptRunner()
    res = await runner.handle_script("""
class A
  def make
    def helper
      1
    end
    helper()
  end
end
class B < A
end
B.new.make
""")
    assert_ok(res, 1)
    ev = runner.evaluator
    assert 'helper' in ev.constants['B'].methods
    assert 'helper' not in ev.constants['A'].methods


# Reopening classes

@pytest.mark.asyncio
async def test_reopening_merges_methods():
    res = await run_taiko("""
class Car
  def setName(str)
    @name = str
  end
end
car1 = Car.new
class Car
  def getName
    @name
  end
end
car1.setName('Legacy')
car2 = Car.new
car2.setName('XV')
[car1.getName, car2.getName]
""")
    assert_ok(res, ['Legacy', 'XV'])

@pytest.mark.asyncio
async def test_reopening_overwrites_same_named_method():
    res = await run_taiko("""
class T
  def v
    1
  end
end
t = T.new
class T
  def v
    2
  end
end
t.v
""")
    assert_ok(res, 2)

@pytest.mark.asyncio
async def test_reopen_with_different_superclass_fails():
    res = await run_taiko("class A\nend\nclass B < A\nend\nclass B < Object\nend")
    assert_error(res, "TypeError: superclass mismatch for class B")

@pytest.mark.asyncio
async def test_unknown_superclass_fails():
    res = await run_taiko("class B < Nope\nend")
    assert_error(res, "uninitialized constant Nope")


# Classes as values

@pytest.mark.asyncio
async def test_self_in_class_body_is_the_class():
    runner = ScriptRunner()
    res = await runner.handle_script("class Foo\n  $seen = self\nend\n$seen")
    assert_ok(res)
    assert isinstance(res.value, TaikoClass)
    assert res.value is runner.evaluator.constants['Foo']

@pytest.mark.asyncio
async def test_class_of_values():
    res = await run_taiko("class Foo\nend\n[Foo.class.name, Foo.new.class.name, 1.class.name, 'a'.class.name, nil.class.name, [].class.name, true.class.name]")
    assert_ok(res, ['Class', 'Foo', 'Integer', 'String', 'NilClass', 'Array', 'TrueClass'])

@pytest.mark.asyncio
async def test_top_level_self_is_main():
    res = await run_taiko("self")
    assert_ok(res)
    assert isinstance(res.value, TaikoObject)
    assert res.value.label == 'main'

@pytest.mark.asyncio
async def test_reopen_builtin_class_adds_methods():
    res = await run_taiko("""
class String
  def shout
    upcase + '!'
  end
end
'hi'.shout
""")
    assert_ok(res, 'HI!')

@pytest.mark.asyncio
async def test_builtin_classes_reject_new():
    res = await run_taiko("Integer.new")
    assert_error(res, "NoMethodError: undefined method 'new' for class Integer")
