"""
Variance-stabilizing transforms for count matrices.

Two transforms are provided, both following the DESeq2 recipes and both
"blind" to the experimental design:

- variance_stabilizing_transform: closed-form VST derived from a fitted
  dispersion-mean trend.
- rlog_transform: regularized log. A negative binomial GLM with one
  coefficient per sample is fitted gene by gene, with a normal prior
  shrinking the sample coefficients towards the gene mean. Low counts are
  shrunk strongly, high counts barely at all.

Everything here is deterministic: same counts in, same matrix out.
"""

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Optional, Tuple
from pandas import DataFrame, Series
from scipy import stats

from .counts import estimate_size_factors


MIN_DISPERSION = 1e-8


@dataclass
class DispersionTrend:
    """
    Fitted dispersion as a function of the mean normalized count.

    fit_type "parametric": dispersion(mean) = a0 + a1 / mean
    fit_type "mean": dispersion(mean) = a0
    """

    fit_type: str
    a0: float
    a1: float = 0.0

    def __call__(self, means) -> np.ndarray:
        means = np.asarray(means, dtype=float)
        if self.fit_type == "parametric":
            with np.errstate(divide="ignore"):
                return self.a0 + self.a1 / means
        return np.full_like(means, self.a0, dtype=float)


def moment_dispersions(
    counts: DataFrame, size_factors: Series
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Method-of-moments dispersion estimate per gene.

    Returns
    -------
    tuple
        (base_means, dispersions), dispersions clipped to
        [MIN_DISPERSION, max(10, n_samples)].
    """
    norm = counts.to_numpy(dtype=float) / size_factors.loc[
        counts.columns
    ].to_numpy(dtype=float)
    n_samples = norm.shape[1]
    base_means = norm.mean(axis=1)
    base_vars = norm.var(axis=1, ddof=1) if n_samples > 1 else np.zeros(len(norm))
    xim = np.mean(1.0 / size_factors.loc[counts.columns].to_numpy(dtype=float))
    with np.errstate(divide="ignore", invalid="ignore"):
        disps = (base_vars - xim * base_means) / base_means**2
    disps = np.nan_to_num(disps, nan=MIN_DISPERSION)
    disps = np.clip(disps, MIN_DISPERSION, max(10.0, float(n_samples)))
    return base_means, disps


def _fit_gamma_identity(
    x: np.ndarray, y: np.ndarray, start: np.ndarray, max_iter: int = 25
) -> Tuple[np.ndarray, bool]:
    """Gamma GLM with identity link, y ~ b0 + b1 * x, fitted by IRLS."""
    design = np.column_stack([np.ones_like(x), x])
    coefs = start.astype(float)
    old_dev = np.inf
    for _ in range(max_iter):
        mu = design @ coefs
        if np.any(mu <= 0):
            return coefs, False
        w = 1.0 / mu**2
        xtwx = design.T @ (design * w[:, None])
        xtwy = design.T @ (w * y)
        coefs = np.linalg.solve(xtwx, xtwy)
        mu = design @ coefs
        if np.any(mu <= 0):
            return coefs, False
        dev = 2 * np.sum(-np.log(y / mu) + (y - mu) / mu)
        if abs(dev - old_dev) / (abs(dev) + 0.1) < 1e-8:
            return coefs, True
        old_dev = dev
    return coefs, False


def _mean_trend(disps: np.ndarray) -> DispersionTrend:
    use = disps > 10 * MIN_DISPERSION
    if not use.any():
        use = np.ones_like(disps, dtype=bool)
    return DispersionTrend("mean", float(stats.trim_mean(disps[use], 0.001)))


def estimate_dispersion_trend(
    counts: DataFrame,
    size_factors: Optional[Series] = None,
    fit_type: str = "parametric",
) -> DispersionTrend:
    """
    Fit the dispersion-mean trend used by both transforms.

    Parameters
    ----------
    counts : DataFrame
        Genes x samples raw counts.
    size_factors : Series, optional
        Estimated from `counts` when not given.
    fit_type : str
        "parametric" (a0 + a1/mean, gamma GLM with iterative outlier
        exclusion) or "mean". A parametric fit that fails to converge to
        positive coefficients falls back to "mean" with a warning.

    Returns
    -------
    DispersionTrend
    """
    if size_factors is None:
        size_factors = estimate_size_factors(counts)

    nonzero = counts.sum(axis=1) > 0
    base_means, disps = moment_dispersions(counts.loc[nonzero], size_factors)

    if fit_type == "mean":
        return _mean_trend(disps)
    if fit_type != "parametric":
        raise ValueError(f"Unknown dispersion fit type: {fit_type}")

    use = disps > 100 * MIN_DISPERSION
    means = base_means[use]
    gene_disps = disps[use]
    if len(means) < 3:
        warnings.warn(
            "Too few genes for a parametric dispersion fit, using mean fit"
        )
        return _mean_trend(disps)

    coefs = np.array([0.1, 1.0])
    for _ in range(11):
        residuals = gene_disps / (coefs[0] + coefs[1] / means)
        good = (residuals > 1e-4) & (residuals < 15)
        if good.sum() < 3:
            break
        old = coefs
        coefs, converged = _fit_gamma_identity(
            1.0 / means[good], gene_disps[good], start=old
        )
        if not np.all(coefs > 0):
            break
        if np.sum(np.log(coefs / old) ** 2) < 1e-6 and converged:
            return DispersionTrend("parametric", float(coefs[0]), float(coefs[1]))

    warnings.warn(
        "Parametric dispersion fit did not converge to positive coefficients, "
        "using mean fit instead"
    )
    return _mean_trend(disps)


def variance_stabilizing_transform(
    counts: DataFrame,
    size_factors: Optional[Series] = None,
    trend: Optional[DispersionTrend] = None,
) -> DataFrame:
    """
    Closed-form variance-stabilizing transform on a log2-like scale.

    Parameters
    ----------
    counts : DataFrame
        Genes x samples raw counts.
    size_factors : Series, optional
        Estimated when not given.
    trend : DispersionTrend, optional
        Fitted when not given.

    Returns
    -------
    DataFrame
        Transformed matrix with the same index and columns as `counts`.
    """
    if size_factors is None:
        size_factors = estimate_size_factors(counts)
    if trend is None:
        trend = estimate_dispersion_trend(counts, size_factors)

    q = counts.to_numpy(dtype=float) / size_factors.loc[
        counts.columns
    ].to_numpy(dtype=float)
    a0 = trend.a0
    if trend.fit_type == "parametric":
        a1 = trend.a1
        values = (
            np.log(
                (
                    1
                    + a1
                    + 2 * a0 * q
                    + 2 * np.sqrt(a0 * q * (1 + a1 + a0 * q))
                )
                / (4 * a0)
            )
            / np.log(2)
        )
    else:
        values = (2 * np.arcsinh(np.sqrt(a0 * q)) - np.log(a0) - np.log(4)) / np.log(
            2
        )
    return pd.DataFrame(values, index=counts.index, columns=counts.columns)


def weighted_quantile(x: np.ndarray, weights: np.ndarray, prob: float) -> float:
    """Quantile of `x` with normalized weights, no interpolation."""
    order = np.argsort(x, kind="stable")
    x = x[order]
    cum = np.cumsum(weights[order])
    cum = cum / cum[-1]
    idx = int(np.searchsorted(cum, prob, side="left"))
    return float(x[min(idx, len(x) - 1)])


def rlog_prior_variance(
    log_fold_changes: np.ndarray, weights: np.ndarray, upper_quantile: float = 0.05
) -> float:
    """
    Prior variance for the sample coefficients of the rlog model.

    The normal prior is matched to the weighted upper quantile of the
    absolute unshrunken log2 fold changes.
    """
    x = np.abs(log_fold_changes).ravel()
    w = np.broadcast_to(weights, log_fold_changes.shape).ravel()
    finite = np.isfinite(x)
    x, w = x[finite], w[finite]
    if len(x) == 0:
        raise ValueError("No finite log fold changes to estimate the prior")
    sd = weighted_quantile(x, w, 1 - upper_quantile) / stats.norm.ppf(
        1 - upper_quantile / 2
    )
    return max(sd**2, 1e-8)


def _nb_deviance(y: np.ndarray, mu: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    size = 1.0 / alpha[:, None]
    prob = size / (size + mu)
    return -2 * stats.nbinom.logpmf(y, size, prob).sum(axis=1)


def _fit_ridge_nb(
    y: np.ndarray,
    sf: np.ndarray,
    design: np.ndarray,
    lambdas: np.ndarray,
    alpha: np.ndarray,
    max_iter: int,
    tol: float,
    min_mu: float = 0.5,
) -> np.ndarray:
    """Penalized IRLS, vectorized over genes. Returns natural-log betas."""
    n_genes = y.shape[0]
    ridge = np.diag(lambdas)
    norm_log = np.log(y / sf + 0.1)
    beta = np.linalg.solve(design.T @ design + ridge, design.T @ norm_log.T).T

    mu = np.maximum(sf * np.exp(beta @ design.T), min_mu)
    dev = _nb_deviance(y, mu, alpha)
    active = np.ones(n_genes, dtype=bool)

    for _ in range(max_iter):
        idx = np.flatnonzero(active)
        if len(idx) == 0:
            break
        mu_a = mu[idx]
        w = mu_a / (1.0 + alpha[idx, None] * mu_a)
        z = np.log(mu_a / sf) + (y[idx] - mu_a) / mu_a
        xtwx = np.einsum("ni,gn,nj->gij", design, w, design) + ridge
        xtwz = np.einsum("ni,gn->gi", design, w * z)
        beta[idx] = np.linalg.solve(xtwx, xtwz[..., None])[..., 0]
        mu[idx] = np.maximum(sf * np.exp(beta[idx] @ design.T), min_mu)
        new_dev = _nb_deviance(y[idx], mu[idx], alpha[idx])
        change = np.abs(new_dev - dev[idx]) / (np.abs(new_dev) + 0.1)
        dev[idx] = new_dev
        active[idx[change < tol]] = False

    if active.any():
        warnings.warn(
            f"rlog fit did not converge for {int(active.sum())} genes "
            f"after {max_iter} iterations"
        )
    return beta


def rlog_transform(
    counts: DataFrame,
    size_factors: Optional[Series] = None,
    trend: Optional[DispersionTrend] = None,
    max_iter: int = 100,
    tol: float = 1e-6,
    chunk_size: int = 2000,
) -> DataFrame:
    """
    Regularized log transform (log2 scale).

    Parameters
    ----------
    counts : DataFrame
        Genes x samples raw counts.
    size_factors : Series, optional
        Estimated when not given.
    trend : DispersionTrend, optional
        Fitted when not given.
    max_iter : int
        Maximum IRLS iterations per gene.
    tol : float
        Relative deviance change at which a gene counts as converged.
    chunk_size : int
        Genes fitted together, bounds memory use.

    Returns
    -------
    DataFrame
        rlog values with the same index and columns as `counts`. Genes with
        only zero counts are 0 in every sample.
    """
    if size_factors is None:
        size_factors = estimate_size_factors(counts)
    if trend is None:
        trend = estimate_dispersion_trend(counts, size_factors)

    sf = size_factors.loc[counts.columns].to_numpy(dtype=float)
    raw = counts.to_numpy(dtype=float)
    nonzero = raw.sum(axis=1) > 0
    y = raw[nonzero]
    n_samples = y.shape[1]

    result = np.zeros_like(raw)
    if len(y) == 0:
        return pd.DataFrame(result, index=counts.index, columns=counts.columns)

    norm = y / sf
    base_means = norm.mean(axis=1)
    disp_fit = np.maximum(trend(base_means), MIN_DISPERSION)

    log_fold_changes = np.log2(norm + 0.5) - np.log2(base_means + 0.5)[:, None]
    weights = 1.0 / (1.0 / base_means + disp_fit)
    prior_var = rlog_prior_variance(log_fold_changes, weights[:, None])

    # intercept plus one coefficient per sample; the prior makes it identifiable
    design = np.column_stack([np.ones(n_samples), np.eye(n_samples)])
    lambdas = np.concatenate([[1e-6], np.full(n_samples, 1.0 / prior_var)])
    lambdas = lambdas / np.log(2) ** 2

    betas = np.empty((len(y), design.shape[1]))
    for start in range(0, len(y), chunk_size):
        stop = start + chunk_size
        betas[start:stop] = _fit_ridge_nb(
            y[start:stop],
            sf,
            design,
            lambdas,
            disp_fit[start:stop],
            max_iter,
            tol,
        )

    result[nonzero] = (betas @ design.T) / np.log(2)
    return pd.DataFrame(result, index=counts.index, columns=counts.columns)


def stabilize_counts(
    counts: DataFrame,
    method: str = "rlog",
    size_factors: Optional[Series] = None,
) -> DataFrame:
    """Dispatch to `rlog_transform` or `variance_stabilizing_transform`."""
    if size_factors is None:
        size_factors = estimate_size_factors(counts)
    trend = estimate_dispersion_trend(counts, size_factors)
    if method == "rlog":
        return rlog_transform(counts, size_factors, trend)
    if method == "vst":
        return variance_stabilizing_transform(counts, size_factors, trend)
    raise ValueError(f"Unknown stabilizing method: {method}")
