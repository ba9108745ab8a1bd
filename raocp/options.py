from .errors import InvalidHorizon, DimensionMismatch


class TreeOptions:
    """
    Construction options of scenario trees
    """

    __aliases = {
        "horizonLength": "horizon_length",
        "branchingHorizon": "branching_horizon",
        "dimValue": "dim_value",
    }

    def __init__(self, horizon_length, branching_horizon=None, dim_value=1, ni=None):
        """
        :param horizon_length: number of stages after the root (N)
        :param branching_horizon: stage after which the tree stops branching [default: horizon_length]
        :param dim_value: dimension of the value of the process at each node [default: 1]
        :param ni: number of children per node at each stage (data-driven trees only) [default: None]
        """
        self.__horizon_length = self.__check_horizon(horizon_length)
        if branching_horizon is None:
            branching_horizon = self.__horizon_length
        self.__branching_horizon = self.__check_branching_horizon(branching_horizon, self.__horizon_length)
        if int(dim_value) != dim_value or dim_value < 1:
            raise DimensionMismatch(f"[TreeOptions] dim_value must be a positive integer; ({dim_value}) not valid")
        self.__dim_value = int(dim_value)
        self.__ni = None if ni is None else self.__check_ni(ni)

    @classmethod
    def from_dict(cls, options):
        """
        :param options: dictionary with keys `horizonLength`, `branchingHorizon`, `dimValue`, `ni`
                        (snake_case keys are also accepted)
        :return: TreeOptions
        """
        kwargs = {}
        for key, value in options.items():
            name = cls.__aliases.get(key, key)
            if name not in ("horizon_length", "branching_horizon", "dim_value", "ni"):
                raise ValueError(f"[TreeOptions] unknown option ({key})")
            kwargs[name] = value
        if "horizon_length" not in kwargs:
            raise InvalidHorizon("[TreeOptions] option (horizonLength) is required")
        return cls(**kwargs)

    @staticmethod
    def __check_horizon(n):
        if int(n) != n or n < 1:
            raise InvalidHorizon(f"[TreeOptions] horizon must be an integer >= 1; ({n}) not valid")
        return int(n)

    @staticmethod
    def __check_branching_horizon(t, n):
        if int(t) != t or t < 0:
            raise InvalidHorizon(f"[TreeOptions] branching horizon must be an integer >= 0; ({t}) not valid")
        if t > n:
            raise InvalidHorizon("[TreeOptions] branching horizon greater than horizon")
        return int(t)

    @staticmethod
    def __check_ni(ni):
        ni = list(ni)
        if len(ni) == 0:
            raise InvalidHorizon("[TreeOptions] ni must contain at least one stage")
        for k, n in enumerate(ni):
            if int(n) != n or n < 1:
                raise InvalidHorizon(f"[TreeOptions] ni[{k}] must be a positive integer; ({n}) not valid")
        return [int(n) for n in ni]

    @property
    def horizon_length(self):
        return self.__horizon_length

    @property
    def branching_horizon(self):
        return self.__branching_horizon

    @property
    def dim_value(self):
        return self.__dim_value

    @property
    def ni(self):
        return self.__ni

    def __repr__(self):
        return (f"TreeOptions(horizon_length={self.__horizon_length}, "
                f"branching_horizon={self.__branching_horizon}, "
                f"dim_value={self.__dim_value}, ni={self.__ni})")
