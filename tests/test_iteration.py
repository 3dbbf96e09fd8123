import pytest
from taiko import ScriptRunner


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

def stdout_lines(res):
    return res.stdout().splitlines()


# times

@pytest.mark.asyncio
async def test_times_yields_counter_from_zero():
    res = await run_taiko("out = []\n3.times do |i|\n  out.push(i)\nend\nout")
    assert_ok(res, [0, 1, 2])

@pytest.mark.asyncio
async def test_times_returns_nil():
    res = await run_taiko("a = 3.times do\n  1\nend\na")
    assert_ok(res)
    assert res.value is None

@pytest.mark.asyncio
async def test_times_block_without_params_ignores_counter():
    res = await run_taiko("3.times do\n  puts('hello')\nend")
    assert_ok(res)
    assert stdout_lines(res) == ['hello', 'hello', 'hello']

@pytest.mark.asyncio
async def test_zero_and_negative_times_run_nothing():
    res = await run_taiko("n = 0\n0.times { |i| n = n + 1 }\n(0 - 2).times { |i| n = n + 1 }\nn")
    assert_ok(res, 0)

@pytest.mark.asyncio
async def test_times_without_block_is_an_error():
    res = await run_taiko("3.times")
    assert_error(res, "ArgumentError")

@pytest.mark.parametrize("n", [0, 1, 5, 20, 255])
@pytest.mark.asyncio
async def test_times_accumulates_triangular_number(n):
    res = await run_taiko(f"a = 0\n{n}.times do |i|\n  a = a + i\nend\na")
    assert_ok(res, n * (n - 1) // 2)


# each

@pytest.mark.asyncio
async def test_each_visits_in_order_and_returns_nil():
    res = await run_taiko("""
v = [1, 'string', 3]
r = v.each do |c|
  puts(c)
end
r
""")
    assert_ok(res)
    assert res.value is None
    assert stdout_lines(res) == ['1', 'string', '3']

@pytest.mark.asyncio
async def test_each_sees_elements_pushed_during_iteration():
    res = await run_taiko("""
v = [1]
seen = 0
v.each do |x|
  seen = seen + 1
  if x < 3
    v.push(x + 1)
  end
end
[seen, v]
""")
    assert_ok(res, [3, [1, 2, 3]])

@pytest.mark.asyncio
async def test_each_on_empty_array_runs_nothing():
    res = await run_taiko("n = 0\n[].each { |x| n = 1 }\nn")
    assert_ok(res, 0)


# for / while

@pytest.mark.asyncio
async def test_for_binds_each_element_and_returns_nil():
    res = await run_taiko("""
sum = 0
r = for x in [1, 2, 3]
  sum = sum + x
end
[sum, r, x]
""")
    assert_ok(res, [6, None, 3])

@pytest.mark.asyncio
async def test_for_over_non_array_is_an_error():
    res = await run_taiko("for x in 5\n  puts(x)\nend")
    assert_error(res, "TypeError: can't iterate Integer")

@pytest.mark.asyncio
async def test_while_loops_until_condition_falsy():
    res = await run_taiko("i = 0\nwhile i < 5\n  i += 1\nend\ni")
    assert_ok(res, 5)

@pytest.mark.asyncio
async def test_while_evaluates_to_nil():
    res = await run_taiko("i = 0\nw = while i < 2\n  i = i + 1\nend\nw")
    assert_ok(res)
    assert res.value is None

@pytest.mark.asyncio
async def test_while_with_nil_condition_never_runs():
    res = await run_taiko("hit = false\nwhile nil\n  hit = true\nend\nhit")
    assert_ok(res, False)


# recursion inside loops

@pytest.mark.asyncio
async def test_countdown_recursion_from_sample():
    res = await run_taiko("""
def fact(a)
  if a > 0
    puts(a)
    fact(a-1)
  end
end
fact(5)
""")
    assert_ok(res)
    assert stdout_lines(res) == ['5', '4', '3', '2', '1']

@pytest.mark.asyncio
async def test_recursion_a_thousand_calls_deep():
    res = await run_taiko("""
def f(n)
  if n == 0
    0
  else
    f(n - 1) + 1
  end
end
f(1000)
""")
    assert_ok(res, 1000)

@pytest.mark.asyncio
async def test_recursion_through_a_block_a_thousand_calls_deep():
    res = await run_taiko("""
def g(n)
  if n == 0
    0
  else
    x = 0
    1.times do |i|
      x = g(n - 1)
    end
    x + 1
  end
end
g(1000)
""")
    assert_ok(res, 1000)

@pytest.mark.asyncio
async def test_deep_run_leaves_recursion_limit_alone():
    import sys
    before = sys.getrecursionlimit()
    res = await run_taiko("def f(n)\n  if n > 0\n    f(n - 1)\n  end\nend\nf(500)")
    assert_ok(res)
    assert sys.getrecursionlimit() == before
