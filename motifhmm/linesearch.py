"""Line searches along a gradient direction in reparameterized coordinates."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from .exceptions import CalculationInfinityError
from .gradient import compute_gradient, norm, scalar_product
from .measures import collection_score

logger = logging.getLogger(__name__)

MIN_STEP = 1e-20
MAX_STEP = 1e20
XTOL = 1e-16


@dataclass
class LineSearchResult:
    """Outcome of a line search.

    Attributes
    ----------
    score : float
        Score of the returned model
    model : ProfileHMM
        The best trial model, or the unchanged starting model if no step improved
    n_evaluations : int
        Number of trial models evaluated
    improved : bool
        Whether the returned model scores better than the starting model
    """

    score: float
    model: object
    n_evaluations: int
    improved: bool


def build_trial_model(model, direction, step: float):
    """Clone the model and move its reparameterized parameters by step * direction.

    Within every row the step is a softmax update, ``P'_ij ~ P_ij * exp(step * d_ij)``,
    which preserves structural zeros and row-stochasticity.
    """
    trial = model.clone()
    T = np.array(model.transition, dtype=np.float64)
    E = np.array(model.emission, dtype=np.float64)
    for matrix, d in ((T, direction.transition), (E, direction.emission)):
        rows = np.flatnonzero(np.any(d != 0, axis=1))
        for i in rows:
            support = matrix[i] > 0
            if not support.any():
                continue
            log_p = np.log(matrix[i, support]) + step * d[i, support]
            log_p -= log_p.max()
            p = np.exp(log_p)
            matrix[i, support] = p / p.sum()
    trial.set_parameters(T, E)
    return trial


def _healthy(model, score: float) -> bool:
    return model.check_consistency() and np.isfinite(score)


def line_search(model, collection, direction, task, options, score: float, center: int = 0, class_params=None):
    """Exponential step size search.

    Starting from ``2**center * initial_step / |direction|`` the step is doubled while
    the score improves; if the first step does not improve, it is halved until it
    does, up to ``max_steps`` times. A trial model failing the health check ends the
    search, keeping the previous trial.

    Returns
    -------
    result : LineSearchResult
    center : int
        Exponent of the accepted step, the starting point of the next search
    """
    ls = options.line_search
    d_norm = norm(direction)
    if d_norm == 0:
        return LineSearchResult(score, model, 0, False), center

    def evaluate(step):
        trial = build_trial_model(model, direction, step)
        s = collection_score(trial, collection, task.measure, task.motifs, options, class_params)
        return trial, s

    best = LineSearchResult(score, model, 0, False)
    step = 2.0**center * ls.initial_step / d_norm
    trial, s = evaluate(step)
    best.n_evaluations += 1
    logger.debug(f"Line search step {step:.4g}: score {s:.6g}")
    if _healthy(trial, s) and s > score:
        best = LineSearchResult(s, trial, best.n_evaluations, True)
        for _ in range(ls.max_steps):
            step *= 2
            trial, s = evaluate(step)
            best.n_evaluations += 1
            logger.debug(f"Line search step {step:.4g}: score {s:.6g}")
            if not _healthy(trial, s) or s <= best.score:
                break
            best = LineSearchResult(s, trial, best.n_evaluations, True)
            center += 1
    else:
        for _ in range(ls.max_steps):
            step /= 2
            center -= 1
            trial, s = evaluate(step)
            best.n_evaluations += 1
            logger.debug(f"Line search step {step:.4g}: score {s:.6g}")
            if _healthy(trial, s) and s > score:
                best = LineSearchResult(s, trial, best.n_evaluations, True)
                break
    return best, center


def _cubic_minimizer(u, fu, du, v, fv, dv):
    d = v - u
    theta = (fu - fv) * 3 / d + du + dv
    s = max(abs(theta), abs(du), abs(dv))
    a = theta / s
    gamma = s * math.sqrt(max(0.0, a * a - (du / s) * (dv / s)))
    if v < u:
        gamma = -gamma
    p = gamma - du + theta
    q = gamma - du + gamma + dv
    return u + p / q * d


def _cubic_minimizer2(u, fu, du, v, fv, dv, xmin, xmax):
    d = v - u
    theta = (fu - fv) * 3 / d + du + dv
    s = max(abs(theta), abs(du), abs(dv))
    a = theta / s
    gamma = s * math.sqrt(max(0.0, a * a - (du / s) * (dv / s)))
    if u < v:
        gamma = -gamma
    p = gamma - dv + theta
    q = gamma - dv + gamma + du
    r = p / q
    if r < 0.0 and gamma != 0.0:
        return v - r * d
    if a < 0:
        return xmax
    return xmin


def _quadratic_minimizer(u, fu, du, v, fv):
    a = v - u
    return u + du / ((fu - fv) / a + du) / 2 * a


def _quadratic_minimizer2(u, du, v, dv):
    a = u - v
    return v + dv / (dv - du) * a


@dataclass
class _Interval:
    """Bracketing state of the Moré-Thuente search."""

    x: float
    fx: float
    dx: float
    y: float
    fy: float
    dy: float
    bracketed: bool = False


def update_trial_interval(iv: _Interval, t: float, ft: float, dt: float, tmin: float, tmax: float, delta: float):
    """Update the interval of uncertainty and compute the next trial step.

    Returns
    -------
    t : float
        The next trial step, or None if the trial lies outside the interval
    """
    dsign = dt * np.sign(iv.dx) < 0
    if iv.bracketed:
        if t <= min(iv.x, iv.y) or max(iv.x, iv.y) <= t:
            return None
        if 0.0 <= iv.dx * (t - iv.x):
            return None
        if tmax < tmin:
            return None

    if iv.fx < ft:
        # higher function value: the minimum is bracketed
        iv.bracketed = True
        bound = True
        mc = _cubic_minimizer(iv.x, iv.fx, iv.dx, t, ft, dt)
        mq = _quadratic_minimizer(iv.x, iv.fx, iv.dx, t, ft)
        newt = mc if abs(mc - iv.x) < abs(mq - iv.x) else mc + 0.5 * (mq - mc)
    elif dsign:
        # derivatives of opposite sign: the minimum is bracketed
        iv.bracketed = True
        bound = False
        mc = _cubic_minimizer(iv.x, iv.fx, iv.dx, t, ft, dt)
        mq = _quadratic_minimizer2(iv.x, iv.dx, t, dt)
        newt = mc if abs(mc - t) > abs(mq - t) else mq
    elif abs(dt) < abs(iv.dx):
        # lower function value, same sign, decreasing derivative magnitude
        bound = True
        mc = _cubic_minimizer2(iv.x, iv.fx, iv.dx, t, ft, dt, tmin, tmax)
        mq = _quadratic_minimizer2(iv.x, iv.dx, t, dt)
        if iv.bracketed:
            newt = mc if abs(t - mc) < abs(t - mq) else mq
        else:
            newt = mc if abs(t - mc) > abs(t - mq) else mq
    else:
        bound = False
        if iv.bracketed:
            newt = _cubic_minimizer(t, ft, dt, iv.y, iv.fy, iv.dy)
        elif iv.x < t:
            newt = tmax
        else:
            newt = tmin

    if iv.fx < ft:
        iv.y, iv.fy, iv.dy = t, ft, dt
    else:
        if dsign:
            iv.y, iv.fy, iv.dy = iv.x, iv.fx, iv.dx
        iv.x, iv.fx, iv.dx = t, ft, dt

    newt = min(max(newt, tmin), tmax)
    if iv.bracketed and bound:
        mq = iv.x + delta * (iv.y - iv.x)
        if iv.x < iv.y:
            newt = min(newt, mq)
        else:
            newt = max(newt, mq)
    return newt


def line_search_more_thuente(model, collection, direction, gradient, task, options, score: float, class_params=None):
    """Moré-Thuente line search satisfying the strong Wolfe conditions.

    The search minimizes ``phi(a) = -score(model + a * direction)``, with derivative
    ``phi'(a) = -<direction, gradient at the trial model>``. ``mu`` and ``eta`` are the
    sufficient decrease and curvature parameters; ``delta`` bounds the shrinkage of the
    interval of uncertainty, falling back to bisection when it shrinks too slowly.

    Parameters
    ----------
    model : ProfileHMM
        Starting model; not modified
    collection : Collection
    direction : Gradient
        Ascent direction
    gradient : Gradient
        Gradient at the starting model
    task : Task
    options : HMMOptions
    score : float
        Score of the starting model

    Returns
    -------
    result : LineSearchResult
    """
    ls = options.line_search
    d_norm = norm(direction)
    dginit = -scalar_product(direction, gradient)
    none = LineSearchResult(score, model, 0, False)
    if d_norm == 0 or dginit >= 0:
        logger.debug("Line search direction is not an ascent direction")
        return none

    finit = -score
    dgtest = ls.mu * dginit
    width = MAX_STEP - MIN_STEP
    prev_width = 2.0 * width
    iv = _Interval(0.0, finit, dginit, 0.0, finit, dginit)
    stage1 = True
    step = ls.initial_step / d_norm
    best = none
    count = 0
    failed = False

    while True:
        if iv.bracketed:
            stmin, stmax = min(iv.x, iv.y), max(iv.x, iv.y)
        else:
            stmin, stmax = iv.x, step + 4.0 * (step - iv.x)
        step = min(max(step, MIN_STEP), MAX_STEP)
        if iv.bracketed and (
            step <= stmin or stmax <= step or ls.max_steps <= count + 1 or failed or stmax - stmin <= XTOL * stmax
        ):
            step = iv.x

        trial = build_trial_model(model, direction, step)
        try:
            s, g, _ = compute_gradient(trial, collection, task, options, class_params)
        except CalculationInfinityError:
            logger.debug(f"Line search step {step:.4g}: infinite score")
            s, g = -np.inf, None
        count += 1
        if not trial.check_consistency():
            s = -np.inf
        f = -s
        dg = -scalar_product(direction, g) if g is not None else 0.0
        ftest1 = finit + step * dgtest
        logger.debug(f"Line search step {step:.4g}: score {s:.6g}")
        if s > best.score:
            best = LineSearchResult(s, trial, count, True)
        else:
            best.n_evaluations = count

        if not np.isfinite(f):
            # unhealthy trial: retreat towards the best point
            iv.bracketed = True
            iv.y, iv.fy, iv.dy = step, np.finfo(float).max, 0.0
            if ls.max_steps <= count:
                break
            step = iv.x + 0.5 * (step - iv.x)
            continue

        if iv.bracketed and (step <= stmin or stmax <= step or failed):
            logger.debug("Line search stopped: rounding errors prevent progress")
            break
        if step == MAX_STEP and f <= ftest1 and dg <= dgtest:
            break
        if step == MIN_STEP and (ftest1 < f or dgtest <= dg):
            break
        if iv.bracketed and stmax - stmin <= XTOL * stmax:
            break
        if ls.max_steps <= count:
            break
        if f <= ftest1 and abs(dg) <= ls.eta * -dginit:
            # strong Wolfe conditions hold
            break

        if stage1 and f <= ftest1 and min(ls.mu, ls.eta) * dginit <= dg:
            stage1 = False
        if stage1 and ftest1 < f and f <= iv.fx:
            # modified function values
            mod = _Interval(
                iv.x,
                iv.fx - iv.x * dgtest,
                iv.dx - dgtest,
                iv.y,
                iv.fy - iv.y * dgtest,
                iv.dy - dgtest,
                iv.bracketed,
            )
            newt = update_trial_interval(mod, step, f - step * dgtest, dg - dgtest, stmin, stmax, ls.delta)
            iv = _Interval(
                mod.x,
                mod.fx + mod.x * dgtest,
                mod.dx + dgtest,
                mod.y,
                mod.fy + mod.y * dgtest,
                mod.dy + dgtest,
                mod.bracketed,
            )
        else:
            newt = update_trial_interval(iv, step, f, dg, stmin, stmax, ls.delta)
        failed = newt is None
        if not failed:
            step = newt

        if iv.bracketed:
            if ls.delta * prev_width <= abs(iv.y - iv.x):
                step = iv.x + 0.5 * (iv.y - iv.x)
            prev_width = width
            width = abs(iv.y - iv.x)

    return best
