# migrator/core/container.py

from typing import TypeVar, Type, Callable, Set
import logging

from .logging import MigratorLogger, log_with_context

T = TypeVar('T')


class MigratorContainer:
    def __init__(self, config):
        self._config = config
        self._services = {}  # service_type -> (factory, is_singleton)
        self._instances = {}
        self._resolution_stack: Set[Type] = set()
        
        self._logger = MigratorLogger.get_logger('core.container')
        self._logger.debug("MigratorContainer initialized")
    
    @property
    def config(self):
        return self._config
        
    def register_factory(self, interface: Type[T], factory_func: Callable[['MigratorContainer'], T],
                         singleton: bool = True) -> 'MigratorContainer':
        log_with_context(self._logger, logging.DEBUG, "Registering factory service",
                        service_type=interface.__name__,
                        singleton=singleton)
        
        self._services[interface] = (factory_func, singleton)
        return self
    
    def register_instance(self, interface: Type[T], instance: T) -> 'MigratorContainer':
        self._services[interface] = (None, True)
        self._instances[interface] = instance
        return self
        
    def get(self, service_type: Type[T]) -> T:
        service_name = service_type.__name__
        
        if service_type in self._resolution_stack:
            circular_path = " -> ".join([t.__name__ for t in self._resolution_stack]) + f" -> {service_name}"
            log_with_context(self._logger, logging.ERROR, "Circular dependency detected",
                           circular_path=circular_path)
            raise ValueError(f"Circular dependency detected: {circular_path}")
        
        if service_type not in self._services:
            raise ValueError(f"Service {service_name} not registered")
            
        factory, is_singleton = self._services[service_type]
        
        if is_singleton and service_type in self._instances:
            return self._instances[service_type]
            
        self._resolution_stack.add(service_type)
        try:
            instance = factory(self)
        finally:
            self._resolution_stack.discard(service_type)
        
        if is_singleton:
            self._instances[service_type] = instance
        
        return instance
