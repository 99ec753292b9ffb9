"""
restaurant_services -- Imperative shell of the restaurant kernel.

Services read the current ``RestaurantState`` from a ``RestaurantStore``,
compute the next state with the pure engines and publish it in one step.
"""
