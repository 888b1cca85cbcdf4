import datetime
import io
import itertools
import logging
import pathlib

import numpy as np
import pytest


LOG_DIR = pathlib.Path(__file__).parent / "test-logs"


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    # Attach the TestReport (with .outcome) to the item so fixtures can see the
    # outcome in teardown.
    outcome = yield
    rep = outcome.get_result()
    setattr(item, "rep_" + rep.when, rep)


@pytest.fixture(autouse=True)
def capture_test_logs(request):
    """Capture slimmap logging for each test into an in-memory buffer and write
    it to a file only when the test fails.
    """
    # the 'slimmap' logger does not propagate to the root logger
    targets = [logging.getLogger(), logging.getLogger('slimmap')]
    prev = [(lg, list(lg.handlers), lg.level) for lg in targets]
    buf = io.StringIO()
    handler = logging.StreamHandler(buf)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    for lg in targets:
        for h in list(lg.handlers):
            lg.removeHandler(h)
        lg.addHandler(handler)
        lg.setLevel(logging.DEBUG)
    try:
        yield
    finally:
        for lg, handlers, level in prev:
            lg.removeHandler(handler)
            for h in handlers:
                lg.addHandler(h)
            lg.setLevel(level)

        rep = getattr(request.node, "rep_call", None)
        if rep is not None and getattr(rep, "outcome", None) == "failed":
            LOG_DIR.mkdir(exist_ok=True)
            nodeid = request.node.nodeid.replace("::", "__").replace("/", "_")
            ts = datetime.datetime.now().strftime("%Y%m%dT%H%M%S")
            fname = LOG_DIR / "{}__{}.log".format(nodeid, ts)
            with open(fname, "w", encoding="utf-8") as f:
                f.write("=== Test: {}\n".format(request.node.nodeid))
                f.write("=== Timestamp: {}\n\n".format(ts))
                f.write(buf.getvalue())


def grid_mesh(nx, ny, width=1.0, height=1.0):
    """Counter-clockwise triangulation of a ``nx`` x ``ny`` cell rectangle."""
    xs = np.linspace(0.0, width, nx + 1)
    ys = np.linspace(0.0, height, ny + 1)
    V = np.array([[x, y] for y in ys for x in xs])
    F = []
    for j in range(ny):
        for i in range(nx):
            a = j * (nx + 1) + i
            b, c, d = a + 1, a + nx + 2, a + nx + 1
            F.append([a, b, c])
            F.append([a, c, d])
    return V, np.array(F, dtype=np.int64)


def cube_tets(n=1, size=1.0):
    """Positively oriented Kuhn subdivision (6 tets per cell) of an ``n``^3 cube grid."""
    g = np.linspace(0.0, size, n + 1)
    V = np.array([[x, y, z] for z in g for y in g for x in g])

    def vid(i, j, k):
        return (k * (n + 1) + j) * (n + 1) + i

    T = []
    for i, j, k in itertools.product(range(n), repeat=3):
        for perm in itertools.permutations(range(3)):
            corner = [i, j, k]
            path = [vid(*corner)]
            for axis in perm:
                corner[axis] += 1
                path.append(vid(*corner))
            T.append(path)
    T = np.array(T, dtype=np.int64)
    P = V[T]
    vol = np.linalg.det(np.stack([P[:, 1] - P[:, 0], P[:, 2] - P[:, 0], P[:, 3] - P[:, 0]], axis=2))
    T[vol < 0] = T[vol < 0][:, [0, 2, 1, 3]]
    return V, T


@pytest.fixture
def unit_square():
    return grid_mesh(1, 1)


@pytest.fixture
def square_grid():
    return grid_mesh(4, 4)


@pytest.fixture
def curved_strip():
    """Disk-topology strip bent along a parabola in 3-D."""
    V2, F = grid_mesh(8, 3, width=2.0, height=1.0)
    x, y = V2[:, 0], V2[:, 1]
    V = np.column_stack([x, y, 0.4 * (x - 1.0) ** 2 + 0.1 * x * y])
    return V, F


@pytest.fixture
def unit_cube_tets():
    return cube_tets(1)


@pytest.fixture
def cube_grid_tets():
    return cube_tets(2)
