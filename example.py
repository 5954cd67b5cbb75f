#!/usr/bin/env python3
"""Example usage of the single-factor credit portfolio simulator.

This script demonstrates:
1. Creating a multi-sector portfolio
2. Generating single-factor scenarios
3. Running the parallel Monte Carlo engine
4. Expected Shortfall and its drill-down decomposition
5. Incremental Risk Contributions (IRC)
6. Risk decomposition by sector and rating
7. Reproducibility across thread counts and subsets
"""

import logging

import numpy as np

from credit_mc import (
    AggregationKey,
    MonteCarloEngine,
    Obligor,
    Portfolio,
    RiskCalculator,
    ScenarioSet,
    SimulationConfig,
    TailRiskAnalyzer,
    create_decomposition_report,
    create_irc_report,
)


def create_sample_portfolio() -> Portfolio:
    """Create a sample diversified credit portfolio."""
    portfolio = Portfolio(name="Sample Portfolio")

    obligors_data = [
        {"id": "TechCorp_A", "pd": 0.02, "lgd": 0.45, "ead": 10_000_000,
         "sector": "technology", "rating": "BBB", "loading": 0.45},
        {"id": "TechCorp_B", "pd": 0.015, "lgd": 0.40, "ead": 8_000_000,
         "sector": "technology", "rating": "A", "loading": 0.50},
        {"id": "Bank_US", "pd": 0.01, "lgd": 0.55, "ead": 15_000_000,
         "sector": "financials", "rating": "A", "loading": 0.55},
        {"id": "Bank_EU", "pd": 0.012, "lgd": 0.50, "ead": 12_000_000,
         "sector": "financials", "rating": "A", "loading": 0.50},
        {"id": "Insurance_Asia", "pd": 0.008, "lgd": 0.45, "ead": 9_000_000,
         "sector": "financials", "rating": "AA", "loading": 0.45},
        {"id": "Energy_US", "pd": 0.035, "lgd": 0.60, "ead": 20_000_000,
         "sector": "energy", "rating": "BB", "loading": 0.55},
        {"id": "Energy_EU", "pd": 0.03, "lgd": 0.55, "ead": 14_000_000,
         "sector": "energy", "rating": "BBB", "loading": 0.50},
        {"id": "Healthcare_US", "pd": 0.018, "lgd": 0.40, "ead": 7_000_000,
         "sector": "healthcare", "rating": "BBB", "loading": 0.40},
        {"id": "Consumer_US", "pd": 0.025, "lgd": 0.50, "ead": 11_000_000,
         "sector": "consumer", "rating": "BB", "loading": 0.45},
        {"id": "Industrial_Asia", "pd": 0.032, "lgd": 0.50, "ead": 10_000_000,
         "sector": "industrials", "rating": "B", "loading": 0.50},
        {"id": "HighRisk_Startup", "pd": 0.08, "lgd": 0.70, "ead": 3_000_000,
         "sector": "technology", "rating": "CCC", "loading": 0.35},
    ]

    for data in obligors_data:
        portfolio.add_obligor(Obligor(**data))

    return portfolio


def main():
    """Run the example."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 70)
    print("SINGLE-FACTOR CREDIT PORTFOLIO SIMULATOR - EXAMPLE")
    print("=" * 70)

    print("\n1. Creating sample portfolio...")
    portfolio = create_sample_portfolio()
    print(f"   Portfolio: {portfolio.name}")
    print(f"   Number of obligors: {len(portfolio)}")
    print(f"   Total EAD: ${portfolio.total_ead:,.0f}")
    print(f"   Total Expected Loss: ${portfolio.total_expected_loss:,.0f}")
    print(f"   Sectors: {portfolio.get_sectors()}")
    print(f"   Ratings: {portfolio.get_ratings()}")

    print("\n2. Generating systematic scenarios...")
    scenarios = ScenarioSet.single_factor(portfolio, num_scenarios=5_000, random_state=42)
    print(f"   Scenarios: {scenarios.num_scenarios:,} x {scenarios.num_obligors} obligors")

    print("\n3. Running Monte Carlo simulation...")
    config = SimulationConfig(draws_per_scenario=10, seed=2024, num_threads=4)
    engine = MonteCarloEngine(config)
    result = engine.simulate(portfolio, scenarios, aggregation=AggregationKey.TOTAL)
    tail = TailRiskAnalyzer(config.confidence).analyze(result)
    print(f"   Scenario-draw rows simulated: {result.num_rows:,}")
    print(f"   Expected Loss: ${result.expected_loss:,.0f}")
    print(f"   Loss Std Dev: ${np.std(result.total_losses):,.0f}")
    print(f"   VaR (99%): ${tail.value_at_risk:,.0f}")
    print(f"   Expected Shortfall (99%): ${tail.expected_shortfall:,.0f}")
    print(f"   Tail rows: {tail.tail_size}")

    print("\n4. Calculating comprehensive portfolio metrics...")
    risk_calc = RiskCalculator(scenarios, engine)
    metrics = risk_calc.calculate_portfolio_metrics(portfolio)
    print(f"   Total EAD: ${metrics['total_ead']:,.0f}")
    print(f"   Expected Loss: ${metrics['expected_loss']:,.0f} ({metrics['expected_loss_rate']:.2%})")
    print(f"   Loss Volatility: ${metrics['loss_volatility']:,.0f}")
    print(f"   VaR (99%): ${metrics['var']:,.0f} ({metrics['var_rate']:.2%})")
    print(f"   Expected Shortfall: ${metrics['expected_shortfall']:,.0f} ({metrics['es_rate']:.2%})")
    print(f"   Unexpected Loss: ${metrics['unexpected_loss']:,.0f}")
    print(f"   Maximum Loss: ${metrics['max_loss']:,.0f}")

    print("\n5. Drilling down into the ES tail...")
    contributions = risk_calc.es_contributions(portfolio)
    print(contributions.contributions.sort_values(ascending=False).to_string())
    print(f"\n   Sum of contributions: ${contributions.total_contribution:,.0f}")
    print(f"   Portfolio ES:         ${contributions.expected_shortfall:,.0f}")

    print("\n6. Calculating Incremental Risk Contributions (IRC)...")
    irc_results = risk_calc.calculate_all_incremental_losses(portfolio)
    irc_df = create_irc_report(irc_results, portfolio)
    print("\n   IRC Results (sorted by ES contribution):")
    print("-" * 70)
    display_cols = ['Obligor', 'Sector', 'Rating', 'EAD', 'IRC_EL', 'IRC_VaR', 'IRC_ES']
    print(irc_df[display_cols].to_string(index=False))

    total_irc_es = irc_df['IRC_ES'].sum()
    print(f"\n   Sum of IRC-ES: ${total_irc_es:,.0f}")
    print(f"   Portfolio ES:  ${metrics['expected_shortfall']:,.0f}")

    print("\n7. Risk Decomposition by Sector...")
    sector_df = create_decomposition_report(
        risk_calc.risk_decomposition_by_sector(portfolio), 'Sector'
    )
    print(sector_df.to_string(index=False))

    print("\n8. Risk Decomposition by Rating...")
    rating_df = create_decomposition_report(
        risk_calc.risk_decomposition_by_rating(portfolio), 'Rating'
    )
    print(rating_df.to_string(index=False))

    print("\n9. Verification checks...")
    single_thread = MonteCarloEngine(config, num_threads=1).simulate(
        portfolio, scenarios, aggregation=AggregationKey.TOTAL
    )
    same = np.array_equal(single_thread.values, result.values)
    print(f"   {'[PASS]' if same else '[FAIL]'} 1 thread and 4 threads agree bit for bit")

    full = engine.simulate(portfolio, scenarios)
    energy = engine.simulate(portfolio.subset(["Energy_US"]), scenarios)
    same = np.array_equal(energy.column("Energy_US"), full.column("Energy_US"))
    print(f"   {'[PASS]' if same else '[FAIL]'} Single-obligor run matches the full run")

    print("\n" + "=" * 70)
    print("SIMULATION COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    main()
